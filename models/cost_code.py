from pydantic import BaseModel


class CostCode(BaseModel):
    """
    A read-only cost code row.
    label is "<code> — <trade> — <element or sub-heading>" with blanks dropped.
    """
    code: str
    trade: str = ""
    element: str = ""
    sub_heading: str = ""
    label: str = ""
