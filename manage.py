"""
Maintenance commands.

    python manage.py serve
    python manage.py seed
    python manage.py create-admin admin@koushikssupplements.com 'Admin@123'
"""
import argparse
import logging

from auth import create_admin
from catalog import seed_products
from database import get_db
from settings import get_settings

logger = logging.getLogger("storefront.manage")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Koushiks Supplements storefront management")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run the API server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=get_settings().PORT)

    sub.add_parser("seed", help="insert the sample catalog if it is empty")

    admin = sub.add_parser("create-admin", help="create an admin or promote an existing user")
    admin.add_argument("email", nargs="?", default="admin@koushikssupplements.com")
    admin.add_argument("password", nargs="?", default="Admin@123")
    admin.add_argument("--name", default="Admin User")

    args = parser.parse_args(argv)
    logging.basicConfig(level=get_settings().LOG_LEVEL.upper())

    if args.command == "serve":
        import uvicorn
        uvicorn.run("main:app", host=args.host, port=args.port)
    elif args.command == "seed":
        inserted = seed_products(get_db())
        print(f"Inserted {inserted} products")
    elif args.command == "create-admin":
        user = create_admin(get_db(), args.email, args.password, name=args.name)
        print(f"Admin ID: {user['_id']}")


if __name__ == "__main__":
    main()
