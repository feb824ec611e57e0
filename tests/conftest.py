import os

os.environ.setdefault("EXPENSES_BCRYPT_ROUNDS", "4")
os.environ.setdefault("EXPENSES_ENV", "test")
