from sqlalchemy import String, orm
from sqlalchemy.orm import mapped_column

from typing_extensions import Annotated

str64 = Annotated[str, 64]
str255 = Annotated[str, 255]
codepk = Annotated[str, mapped_column(String(64), primary_key=True)]


class Base(orm.DeclarativeBase):
    type_annotation_map = {
        str64: String(64),
        str255: String(255),
        codepk: String(64),
    }
