import argparse

from dotenv import load_dotenv

load_dotenv(override=True)

from authgate.config import ConfigError, load_config
from authgate.core import run_proxy


def build_parser():
    p = argparse.ArgumentParser(
        prog="authgate",
        description="Reverse proxy that puts HTTP Basic-Auth in front of one upstream.",
        epilog="Every flag falls back to AUTHGATE_<NAME> from the environment or .env.",
    )
    p.add_argument("-x", "--proxy", help="upstream origin, e.g. http://my-server:80/")
    p.add_argument("-u", "--user", help="accepted username, e.g. bob")
    p.add_argument("-p", "--pass", dest="pass_", metavar="PASS",
                   help="accepted password, e.g. hunter2")
    p.add_argument("-r", "--realm", help='challenge realm, e.g. "My special place"')
    p.add_argument("--listen-host", help="interface to bind (default 0.0.0.0)")
    p.add_argument("--listen-port", help="port to bind (default 3000)")
    p.add_argument("--upstream-timeout",
                   help="seconds to wait for the upstream response head (default 30)")
    p.add_argument("--log-path", help="JSON-lines log basename, empty to disable")
    return p


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    overrides = {
        "proxy": args.proxy,
        "user": args.user,
        "pass": args.pass_,
        "realm": args.realm,
        "listen_host": args.listen_host,
        "listen_port": args.listen_port,
        "upstream_timeout": args.upstream_timeout,
        "log_path": args.log_path,
    }
    try:
        config = load_config(overrides)
        run_proxy(config)
    except ConfigError as e:
        parser.error(str(e))


if __name__ == "__main__":
    main()
