from sqlalchemy import select, func
from sqlalchemy.orm import Session
from app.data.models.user import UserModel
from app.data.models.user_address import UserAddressModel

class UserRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> UserModel | None:
        return self.db.get(UserModel, user_id)

    def create_user(self, user: UserModel) -> UserModel:
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def find_address(self, user_id: int, street: str, city: str, state: str, zip_code: str) -> UserAddressModel | None:
        #porownanie bez wielkosci liter i spacji na brzegach
        return self.db.execute(
            select(UserAddressModel).where(
                UserAddressModel.user_id == user_id,
                UserAddressModel.is_active.is_(True),
                func.lower(UserAddressModel.street_address) == street.strip().lower(),
                func.lower(UserAddressModel.city) == city.strip().lower(),
                func.lower(UserAddressModel.state) == state.strip().lower(),
                UserAddressModel.zip_code == zip_code.strip(),
            ).order_by(UserAddressModel.id)
        ).scalars().first()

    def has_default_address(self, user_id: int) -> bool:
        return self.db.execute(
            select(UserAddressModel.id).where(
                UserAddressModel.user_id == user_id,
                UserAddressModel.is_default.is_(True),
            )
        ).first() is not None

    def add_address(self, address: UserAddressModel) -> UserAddressModel:
        self.db.add(address)
        self.db.flush()
        return address
