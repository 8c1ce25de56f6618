#!/usr/bin/env python3
"""Register client applications allowed to request tokens.
Usage: SEED_CLIENTS="hrm-app:HRM Application:secret1,crm-app:CRM Application:secret2" python scripts/seed_clients.py
Existing client ids are skipped; secrets are stored as bcrypt hashes."""
import asyncio
import os
import sys

from sqlalchemy import select

from authsvc.core.auth import hash_client_secret
from authsvc.db.session import async_session_maker, init_db
from authsvc.models.client import Client
from authsvc.services.sql_stores import SqlClientRegistry


def parse_clients(raw: str) -> list[tuple[str, str, str]]:
    clients = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        parts = entry.split(":", 2)
        if len(parts) != 3 or not all(p.strip() for p in parts):
            raise ValueError(f"Invalid SEED_CLIENTS entry (expected id:name:secret): {parts[0]!r}")
        client_id, name, secret = (p.strip() for p in parts)
        clients.append((client_id, name, secret))
    return clients


async def main() -> int:
    raw = os.environ.get("SEED_CLIENTS", "")
    if not raw:
        print("Set SEED_CLIENTS in environment")
        return 1
    clients = parse_clients(raw)
    await init_db()

    print("Seeding clients...")
    async with async_session_maker() as session:
        registry = SqlClientRegistry(session)
        for client_id, name, secret in clients:
            r = await session.execute(select(Client.id).where(Client.client_id == client_id))
            if r.scalar_one_or_none() is not None:
                print(f"Client {client_id} already exists, skipping.")
                continue
            await registry.create_client(
                client_id=client_id,
                client_name=name,
                client_secret_hash=hash_client_secret(secret),
            )
            print(f"Client {client_id} created.")
        await session.commit()
    print("Seeding complete.")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
