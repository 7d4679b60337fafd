# scripts/init_db.py
import os
import sys

from animehub.repo import SqliteRepo

DB = sys.argv[1] if len(sys.argv) > 1 else os.path.join("data", "anime.db")
SqliteRepo(DB).init_schema()
print("initialized db at", DB)
