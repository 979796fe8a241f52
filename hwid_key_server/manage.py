import sys

from .server import create_app

USAGE = """Usage: python -m hwid_key_server.manage COMMAND [ARGS]

Commands:
  init-db                    create tables
  purge-expired              delete expired records
  actives                    list active leases
  blacklist HWID [REASON]    revoke an HWID and kick it
  unblacklist HWID           lift a blacklist entry
  kick HWID [REASON]         force a connected client to disconnect"""


def run(argv, app=None) -> int:
    if not argv:
        print(USAGE)
        return 1

    command, args = argv[0], [a.strip() for a in argv[1:]]
    needs_hwid = command in ("blacklist", "unblacklist", "kick")
    if needs_hwid and (not args or not args[0]):
        print(USAGE)
        return 1

    app = app or create_app()
    services = app.extensions["hwid_key_server"]
    admin = services["admin"]

    with app.app_context():
        if command == "init-db":
            print("[OK] tables ready")
        elif command == "purge-expired":
            removed = services["store"].purge_expired()
            print(f"[OK] purged {removed} expired records")
        elif command == "actives":
            result = admin.list_actives().payload
            for item in result["items"]:
                print(f"{item['hwid']}\t{item['secondsLeft']}s\texpires_at={item['expiresAt']}")
            print(f"[OK] {result['count']} active")
        elif command == "blacklist":
            admin.blacklist(args[0], " ".join(args[1:]))
            print(f"[OK] blacklisted: {args[0]}")
        elif command == "unblacklist":
            admin.unblacklist(args[0])
            print(f"[OK] unblacklisted: {args[0]}")
        elif command == "kick":
            admin.kick(args[0], " ".join(args[1:]))
            print(f"[OK] kicked: {args[0]}")
        else:
            print(f"Unknown command: {command}\n")
            print(USAGE)
            return 1
    return 0


def main():
    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
