import os
import tempfile

# settings are read once at import; point everything at a scratch dir first
_TMP = tempfile.mkdtemp(prefix="daily-discounts-tests-")

os.environ["DATA_DIR"] = _TMP
os.environ["LOG_DIR"] = os.path.join(_TMP, "logs")
os.environ["STATE_DIR"] = os.path.join(_TMP, "state")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_TO_STDOUT"] = "0"
os.environ["ENABLE_SCHEDULER"] = "0"
os.environ["MUTATION_SLEEP_SEC"] = "0"
os.environ["SLEEP_BETWEEN_PAGES_MS"] = "0"
os.environ["SLEEP_BETWEEN_SHOPS_MS"] = "0"
