"""CLI for running the relay and inspecting its configuration."""
import argparse
import json

from chatrelay.core.config import get_settings

MASKED_FIELDS = ("provider_api_key", "admin_token")


def masked_settings() -> dict:
    """Effective settings with secrets replaced by ***"""
    data = get_settings().model_dump()
    for field in MASKED_FIELDS:
        if data.get(field):
            data[field] = "***"
    return data


def cmd_serve(args):
    """Run the app under uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "chatrelay.main:app",
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        reload=args.reload,
        access_log=settings.log_uvicorn_access,
    )
    return 0


def cmd_config(args):
    print(json.dumps(masked_settings(), indent=2, default=str))
    return 0


def build_parser():
    p = argparse.ArgumentParser(prog="chatrelay")
    sub = p.add_subparsers(dest="cmd")
    s = sub.add_parser("serve", help="Run the HTTP server")
    s.add_argument("--host", help="Bind address (default: API_HOST)")
    s.add_argument("--port", type=int, help="Bind port (default: API_PORT)")
    s.add_argument("--reload", action="store_true", help="Reload on code changes")
    s.set_defaults(func=cmd_serve)
    s = sub.add_parser("config", help="Print effective settings with secrets masked")
    s.set_defaults(func=cmd_config)
    return p


def main(argv=None):
    p = build_parser()
    args = p.parse_args(argv)
    if not hasattr(args, "func"):
        p.print_help()
        return 2
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
