from dotenv import load_dotenv

load_dotenv()

from pcntrack.config import get_settings
from pcntrack.db import Database
from pcntrack.models.api_key import ApiKey, ApiScope
from pcntrack.utils.apikey import gen_key


def main() -> None:
    database = Database(get_settings().database_url)
    raw_token, prefix, key_hash = gen_key()

    try:
        with database.session() as db:
            api_key = ApiKey(
                name=f"admin-{prefix}",
                prefix=prefix,
                key_hash=key_hash,
                scope=ApiScope.admin,
                is_active=True,
            )
            db.add(api_key)
            db.commit()
            db.refresh(api_key)

            print("==========================================")
            print("Admin API key created")
            print("Use this key in your Authorization header (it is not stored):")
            print(f"    Authorization: Bearer {raw_token}")
            print(f"(DB id: {api_key.id}, scope: {api_key.scope.value})")
            print("==========================================")
    finally:
        database.dispose()


if __name__ == "__main__":
    main()
