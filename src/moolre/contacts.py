import uuid
from typing import Protocol

from loguru import logger
from pydantic import BaseModel

from moolre.client import strip_whitespace
from moolre.errors import ContactNotFoundError, DuplicateContactError, ValidationError
from moolre.notifications import is_valid_phone


class Contact(BaseModel):
    id: str
    name: str
    phone: str


class ContactRepository(Protocol):
    def create(self, name: str, phone: str) -> Contact: ...

    def list(self) -> list[Contact]: ...

    def delete(self, contact_id: str) -> None: ...


class InMemoryContactRepository:
    """Contact directory kept in process memory, reset on restart."""

    def __init__(self):
        self._contacts: dict[str, Contact] = {}

    def create(self, name: str, phone: str) -> Contact:
        if not (name and name.strip()) or not (phone and phone.strip()):
            raise ValidationError("Name and phone are required")
        if not is_valid_phone(phone):
            raise ValidationError("Invalid phone number format")

        phone = strip_whitespace(phone)
        if any(contact.phone == phone for contact in self._contacts.values()):
            raise DuplicateContactError("Contact with this phone number already exists")

        contact = Contact(id=f"contact-{uuid.uuid4().hex[:12]}", name=name.strip(), phone=phone)
        self._contacts[contact.id] = contact
        logger.info(f"Added contact {contact.id}")
        return contact

    def list(self) -> list[Contact]:
        return list(self._contacts.values())

    def delete(self, contact_id: str) -> None:
        if not contact_id:
            raise ValidationError("Contact ID is required")
        if self._contacts.pop(contact_id, None) is None:
            raise ContactNotFoundError(f"Contact {contact_id} not found")
        logger.info(f"Deleted contact {contact_id}")
