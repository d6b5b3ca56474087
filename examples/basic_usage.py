import asyncio
import os

from station_sync import RemoteConfig, StationDatabase, SyncConfig


async def run_example():
    db_path = "example_station.db"
    dsn = os.environ.get("STATION_SYNC_DSN", "postgresql://pos@localhost/station")

    print("--- Station Sync: Basic Example ---")

    db = StationDatabase.from_config(SyncConfig(local_path=db_path), RemoteConfig(dsn=dsn))
    db.on_connection_change(lambda change: print(f"Connection {change.status.value}: {change.reason}"))
    db.on_sync_complete(lambda report: print(f"Synced {report.synced}, failed {report.failed}"))

    # 1. Open the local file and probe the central database
    status = await db.initialize()
    print("Online" if status["online"] else "Offline, writes will be queued")

    # 2. Make sure the sales table exists locally for offline use
    db.local.execute("""
        CREATE TABLE IF NOT EXISTS sales (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            pump INTEGER NOT NULL,
            litres REAL NOT NULL,
            created_at INTEGER
        )
    """)

    # 3. Record a sale; goes to PostgreSQL when reachable, else to SQLite
    sale_id = await db.execute_insert(
        "INSERT INTO sales (pump, litres, created_at) VALUES ($1, $2, NOW())",
        [3, 42.5],
        "sales",
    )
    print(f"Sale recorded with id {sale_id}")

    # 4. Inspect the queue
    print("Connection status:", db.get_connection_status())

    # 5. Let the monitor replay queued writes once the connection returns
    await db.start_monitor()
    await asyncio.sleep(1)
    await db.close()
    print("\nExample finished. Database saved to", db_path)


if __name__ == "__main__":
    asyncio.run(run_example())
