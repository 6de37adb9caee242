from .db import get_engine, init_db
from .utils.log import setup_logging


def main():
    setup_logging()
    init_db(get_engine())
    print("✔ Tables created in database.")


if __name__ == "__main__":
    main()
