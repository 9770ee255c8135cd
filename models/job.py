from pydantic import BaseModel

from .purchase_order import JobSnapshot


class Job(BaseModel):
    """A job / site that orders are raised against."""
    id: str
    job_code: str
    job_number: str = ""               # optional alternative reference
    name: str
    site_address: str = ""
    site_manager: str = ""
    site_phone: str = ""
    client: str = ""
    notes: str = ""
    active: bool = True
    created_at: str = ""
    updated_at: str = ""

    def snapshot(self) -> JobSnapshot:
        """Copy embedded into a PO at save time."""
        return JobSnapshot(
            id=self.id,
            name=self.name,
            job_code=self.job_code,
            job_number=self.job_number,
            site_address=self.site_address,
            site_manager=self.site_manager,
            site_phone=self.site_phone,
        )
