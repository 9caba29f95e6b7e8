"""通用 CRUD 基类。

所有仓库继承 BaseCRUD 获得通用的增删改查能力。每个方法都支持传入
外部会话（session 参数），以便多个操作在同一事务中完成；不传时使用
独立会话并自动提交。

数据库异常（SQLAlchemyError）在会话范围内统一回滚并转换为
business.errors.StorageError。
"""
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from loguru import logger

from business.errors import StorageError
from .connection import DatabaseConnection

ModelT = TypeVar("ModelT")

LIKE_ESCAPE = "\\"


def like_pattern(keyword: str) -> str:
    """构造 ilike 模糊匹配模式，转义 % 与 _ 通配符（配合 escape=LIKE_ESCAPE）。"""
    escaped = (
        keyword.strip()
        .replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"


class BaseCRUD:
    """通用增删改查。

    Attributes:
        conn: 数据库连接管理器。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        self.conn = conn

    @contextmanager
    def _get_session(self) -> Iterator[Session]:
        """获取会话，数据库异常回滚后转换为 StorageError。"""
        session = self.conn.get_session()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database operation failed: {e}")
            raise StorageError(f"Database operation failed: {e}") from e
        finally:
            session.close()

    def _run(self, func, session: Optional[Session] = None,
             commit: bool = False):
        """在外部会话或新会话中执行 func(session)。"""
        if session is not None:
            return func(session)

        with self._get_session() as sess:
            result = func(sess)
            if commit:
                sess.commit()
            return result

    def create(self, model: Type[ModelT], session: Optional[Session] = None,
               **fields: Any) -> ModelT:
        """创建一条记录。

        Args:
            model: ORM 模型类。
            session: 外部会话（可选）。
            **fields: 字段值。

        Returns:
            新创建的对象（已分配ID）。
        """
        def _do(sess):
            obj = model(**fields)
            sess.add(obj)
            sess.flush()
            sess.refresh(obj)
            return obj

        obj = self._run(_do, session, commit=True)
        if session is None:
            logger.info(f"Created {model.__name__} id={obj.id}")
        return obj

    def get_by_id(self, model: Type[ModelT], record_id: int,
                  session: Optional[Session] = None) -> Optional[ModelT]:
        """按主键查询，不存在返回 None。"""
        return self._run(lambda sess: sess.get(model, record_id), session)

    def get_all(self, model: Type[ModelT],
                filters: Optional[Dict[str, Any]] = None,
                order_by: Any = None,
                session: Optional[Session] = None) -> List[ModelT]:
        """按等值条件查询记录列表。

        Args:
            model: ORM 模型类。
            filters: 字段等值过滤条件（可选）。
            order_by: 排序表达式（可选）。
            session: 外部会话（可选）。

        Returns:
            记录列表。
        """
        def _query(sess):
            query = sess.query(model)
            if filters:
                query = query.filter_by(**filters)
            if order_by is not None:
                query = query.order_by(order_by)
            return query.all()

        return self._run(_query, session)

    def count(self, model: Type[ModelT],
              filters: Optional[Dict[str, Any]] = None,
              session: Optional[Session] = None) -> int:
        """按等值条件计数。"""
        def _query(sess):
            query = sess.query(model)
            if filters:
                query = query.filter_by(**filters)
            return query.count()

        return self._run(_query, session)

    def update_by_id(self, model: Type[ModelT], record_id: int,
                     session: Optional[Session] = None,
                     **fields: Any) -> Optional[ModelT]:
        """按主键更新字段。

        Returns:
            更新后的对象，不存在返回 None。
        """
        def _do(sess):
            obj = sess.get(model, record_id)
            if obj is None:
                return None
            for key, value in fields.items():
                setattr(obj, key, value)
            sess.flush()
            sess.refresh(obj)
            return obj

        obj = self._run(_do, session, commit=True)
        if obj is not None and session is None:
            logger.info(
                f"Updated {model.__name__} id={record_id}: {sorted(fields)}"
            )
        return obj

    def delete_by_id(self, model: Type[ModelT], record_id: int,
                     session: Optional[Session] = None) -> bool:
        """按主键删除。

        Returns:
            是否删除成功（记录不存在返回 False）。
        """
        def _do(sess):
            obj = sess.get(model, record_id)
            if obj is None:
                return False
            sess.delete(obj)
            sess.flush()
            return True

        deleted = self._run(_do, session, commit=True)
        if deleted and session is None:
            logger.info(f"Deleted {model.__name__} id={record_id}")
        return deleted
