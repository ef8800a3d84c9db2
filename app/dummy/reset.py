from tortoise import Tortoise

# children first so foreign keys never dangle
RESET_TABLES = {
    "jobs": ["payments", "applications", "testing_jobs"],
    "users": [
        "notification_outbox", "notifications", "notification_settings", "fraud_logs",
        "device_tokens", "device_info", "payments", "applications", "testing_jobs", "users",
    ],
}


async def reset_data(apps: list[str]):
    conn = Tortoise.get_connection("default")

    for app in apps:
        for table in RESET_TABLES.get(app, []):
            print(f"🧹 Clearing table: {table}")
            await conn.execute_script(f"DELETE FROM {table};")
