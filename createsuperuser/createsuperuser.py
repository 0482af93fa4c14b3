import sys
from getpass import getpass

from sqlalchemy.orm import Session

from petshop.config import Settings
from petshop.database import Database
from petshop.models import User, UserRole
from petshop.security import hash_password


def create_superuser(db: Session, full_name: str, email: str, password: str, rounds: int = 12) -> User:
    email = email.strip().lower()
    if not email or len(password) < 6:
        raise ValueError("Email is required and the password needs at least 6 characters")

    if db.query(User).filter(User.email == email).first():
        raise ValueError(f"User with email {email} already exists")

    user = User(
        full_name=full_name.strip() or "Administrator",
        email=email,
        hashed_password=hash_password(password, rounds),
        role=UserRole.ADMIN,
        is_active=True,
    )

    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def main() -> int:
    settings = Settings.from_env()
    database = Database(settings.database_url)
    database.create_all()
    db = database.session()

    full_name = input("Full name: ")
    email = input("Email: ")
    password = getpass("Password: ")

    try:
        create_superuser(db, full_name, email, password, settings.bcrypt_rounds)
    except ValueError as exc:
        print(f"❌ {exc}")
        return 1
    finally:
        db.close()
        database.dispose()

    print("✅ Superuser created successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
