# edemy/scripts/purge_deleted_accounts.py
"""Job periódico (cron): borra las cuentas cuya baja programada ya venció."""
import logging

from edemy.config.database import close_connections
from edemy.services.user_service import UserService


def main() -> int:
    logging.basicConfig(level=logging.INFO)
    print("🔄 Buscando cuentas con baja programada...")
    try:
        purged = UserService().purge_scheduled_deletions()
    finally:
        close_connections()
    print(f"✅ {purged} cuenta(s) eliminada(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
