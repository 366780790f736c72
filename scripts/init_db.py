from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from cryptohub.db import Database, migrate
from cryptohub.config import settings

if __name__ == '__main__':
    db = Database(settings.db_path)
    migrate(db.conn)
    snap_count = db.conn.execute("SELECT COUNT(*) FROM balance_snapshots").fetchone()[0]
    ex_count = db.conn.execute("SELECT COUNT(*) FROM user_exchanges").fetchone()[0]
    print('DB ready at', settings.db_path, '| snapshots:', snap_count, '| exchanges:', ex_count)
