"""
blobtree REST API
"""

import argparse
import logging
import os
import secrets
import sys
from pathlib import Path

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from blobtree.config import ENV_PREFIX, AuthOptions, get_settings, validate_settings

SECRET_FIELDS = {"s3_secret_key", "token_secret"}


def run(args):
    settings = get_settings()
    logging.info(
        f"Starting server at port {args.port}, debug={not args.nodebug}, auth={settings.auth}, storage={settings.storage}"
    )
    for warning in validate_settings(settings):
        logging.warning(warning)
    logging.info(
        "To change server config, create an .env file and/or set environment parameters,\n"
        f"{' ' * 26}see blobtree/config.py for more information.\n"
        f"{' ' * 26}You can also run `python -m blobtree create-env` to create a .env file with a random token secret\n"
    )
    log_config = "logging.yml" if Path("logging.yml").exists() else LOGGING_CONFIG
    uvicorn.run(
        "blobtree.api:create_app",
        factory=True,
        host="0.0.0.0",
        reload=not args.nodebug,
        port=int(args.port),
        log_config=log_config,
    )


def _masked(fieldname: str, value) -> str:
    if value is None:
        return ""
    if fieldname in SECRET_FIELDS:
        return "*" * 8
    return str(value.value if isinstance(value, AuthOptions) else value)


def show_config(_args):
    settings = get_settings()
    print(f"# Settings read from the environment and {settings.env_file}")
    for fieldname, fieldinfo in type(settings).model_fields.items():
        if doc := fieldinfo.description:
            print(f"# {doc}")
        print(f"{ENV_PREFIX.upper()}{fieldname.upper()}={_masked(fieldname, getattr(settings, fieldname))}\n")
    for warning in validate_settings(settings):
        print(f"# WARNING: {warning}")


def base_env():
    return dict(
        blobtree_token_secret=secrets.token_hex(nbytes=32),
        blobtree_auth=AuthOptions.authorized_users_only.value,
    )


def create_env(args):
    if os.path.exists(".env"):
        print("*** File .env already exists, quitting ***")
        sys.exit(1)

    env = base_env()
    if args.storage:
        env["blobtree_storage"] = args.storage
    if args.oidc_url:
        env["blobtree_oidc_url"] = args.oidc_url
    with open(".env", "w") as f:
        for key, val in env.items():
            f.write(f"{key}={val}\n")
    os.chmod(".env", 0o600)
    print("*** Created .env file ***")


def main():
    parser = argparse.ArgumentParser(description=__doc__, prog="python -m blobtree")

    subparsers = parser.add_subparsers(dest="action", title="action", help="Action to perform:", required=True)
    p = subparsers.add_parser("run", help="Run the backend API in development mode")
    p.add_argument(
        "--no-debug",
        action="store_true",
        dest="nodebug",
        help="Disable debug mode (useful for testing downstream clients)",
    )
    p.add_argument("-p", "--port", help="Port", default=5000)
    p.set_defaults(func=run)

    p = subparsers.add_parser("create-env", help="Create the .env file with a random token secret")
    p.add_argument("-s", "--storage", choices=["s3", "memory"], help="The object store backend")
    p.add_argument("-o", "--oidc_url", help="The OIDC issuer that signs bearer tokens")
    p.set_defaults(func=create_env)

    p = subparsers.add_parser("config", help="Show the current blobtree settings (secrets are masked)")
    p.set_defaults(func=show_config)

    args = parser.parse_args()

    logging.basicConfig(format="[%(levelname)-7s:%(name)-15s] %(message)s", level=logging.INFO)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)

    args.func(args)


if __name__ == "__main__":
    main()
