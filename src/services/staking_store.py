from typing import Iterable, List, Optional, Type, TypeVar, Union

from sqlmodel import Session, SQLModel, select

ModelT = TypeVar("ModelT", bound=SQLModel)


class StakingStore:
    """get / find / upsert access to the staking tables.

    Writes join the session's current transaction; callers commit once per
    unit of work.
    """

    def __init__(self, session: Session):
        self.session = session

    def get(self, model: Type[ModelT], entity_id: str) -> Optional[ModelT]:
        return self.session.get(model, entity_id)

    def find(self, model: Type[ModelT]) -> List[ModelT]:
        return list(self.session.exec(select(model)).all())

    def upsert(self, entities: Union[SQLModel, Iterable[SQLModel]]):
        if isinstance(entities, SQLModel):
            entities = [entities]
        for entity in entities:
            self.session.merge(entity)
        self.session.flush()

    def commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()
