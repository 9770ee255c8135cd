from pydantic import BaseModel

from .purchase_order import SupplierSnapshot


class Supplier(BaseModel):
    """
    A supplier in the supplier directory.

    Names are not unique at the storage layer; the directory refuses to
    create a second supplier with the same name (case-insensitive).
    """
    id: str
    name: str
    address1: str = ""
    address2: str = ""
    city: str = ""
    postcode: str = ""
    contact_name: str = ""
    contact_email: str = ""
    contact_phone: str = ""
    vat_number: str = ""
    terms_days: int = 30               # payment terms
    notes: str = ""
    created_at: str = ""
    updated_at: str = ""

    @property
    def address_line(self) -> str:
        """Address1 and address2 joined for single-line display."""
        return ", ".join(p for p in (self.address1, self.address2) if p)

    def snapshot(self) -> SupplierSnapshot:
        return SupplierSnapshot(
            id=self.id,
            name=self.name,
            address1=self.address1,
            address2=self.address2,
            city=self.city,
            postcode=self.postcode,
            contact_name=self.contact_name,
            contact_email=self.contact_email,
            contact_phone=self.contact_phone,
            vat_number=self.vat_number,
        )
