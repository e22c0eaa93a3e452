# scripts/seed_carrier_token.py
import argparse
import asyncio
import sys
from pathlib import Path

# Adds the project root to the path so the application modules can be imported
sys.path.append(str(Path(__file__).resolve().parent.parent))

from crud import tokens as tokens_crud
from database import AsyncSessionLocal, create_tables, engine
from settings import settings

async def main(account_key: str, refresh_token: str):
    print("Connecting to the database...")
    await create_tables()

    async with AsyncSessionLocal() as session:
        await tokens_crud.seed_refresh_token(session, account_key, refresh_token)

    await engine.dispose()
    print(f"Refresh token stored for carrier account '{account_key}' ({refresh_token[:6]}...).")
    print("The access token will be refreshed on the next carrier call.")

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Stores a Melhor Envio refresh token for a carrier account.")
    parser.add_argument("refresh_token")
    parser.add_argument("--account-key", default="default")
    args = parser.parse_args()
    if not args.refresh_token.strip():
        print("ERROR: the refresh token is empty.")
        sys.exit(1)
    if args.account_key not in settings.MELHOR_ENVIO_ACCOUNT_KEYS:
        print(f"ERROR: unknown carrier account '{args.account_key}', add it to MELHOR_ENVIO_ACCOUNT_KEYS first.")
        sys.exit(1)
    asyncio.run(main(args.account_key, args.refresh_token.strip()))
