from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class _Base(BaseModel):
    """
    - from_attributes: ORM rows serialize directly
    - extra="ignore": tolerate stale client fields
    - populate_by_name: alias / field name both accepted
    """

    model_config = ConfigDict(
        from_attributes=True,
        extra="ignore",
        populate_by_name=True,
    )


class OkOut(_Base):
    ok: bool = True
