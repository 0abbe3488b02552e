from sqlalchemy.orm import Session
from app.data.models.user import UserModel
from app.data.models.user_address import UserAddressModel
from app.domain.errors import NotFound
from app.repos.user_repo import UserRepo
from app.domain.schemas import UserCreate, UserRead, AddressIn
from app.utils.logging import get_logger

logger = get_logger(__name__)


class UserService:
    def __init__(self, db: Session):
        self.repo = UserRepo(db)

    def create_user(self, payload: UserCreate) -> UserRead:
        existing = self.repo.get_user(payload.id)
        if existing:
            return UserRead.model_validate(existing)

        user = UserModel(id=payload.id, name=payload.name, email=payload.email)
        created = self.repo.create_user(user)
        return UserRead.model_validate(created)

    def get_user(self, user_id: int) -> UserRead:
        user = self.repo.get_user(user_id)
        if not user:
            raise NotFound("User not found")
        return UserRead.model_validate(user)

    def resolve_address(self, user_id: int, address: AddressIn) -> UserAddressModel:
        """
        Reuses a matching saved address or inserts a new one (no commit).
        A new address becomes the default only if the user has none yet.
        """
        existing = self.repo.find_address(
            user_id, address.street_address, address.city, address.state, address.zip_code
        )
        if existing:
            if address.delivery_instructions:
                existing.delivery_instructions = address.delivery_instructions
            return existing

        created = self.repo.add_address(
            UserAddressModel(
                user_id=user_id,
                label=address.label or "Checkout Address",
                street_address=address.street_address.strip(),
                city=address.city.strip(),
                state=address.state.strip(),
                zip_code=address.zip_code.strip(),
                delivery_instructions=address.delivery_instructions,
                is_default=not self.repo.has_default_address(user_id),
                is_active=True,
            )
        )
        logger.info(f"Nowy adres {created.id} dla uzytkownika {user_id} (default={created.is_default})")
        return created
