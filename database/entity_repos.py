"""实体仓库 —— 基础实体的数据访问层。

管理系统中的基础实体（会员、会员套餐）。
每个仓库继承 BaseCRUD 获得通用能力，并添加领域特定的查询方法。
"""
from typing import Optional, List, Dict, Any, Tuple
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload
from loguru import logger

from business.errors import ReferentialError
from .base_crud import BaseCRUD, LIKE_ESCAPE, like_pattern
from .connection import DatabaseConnection
from .models import (
    Member, MembershipPlan, MemberMembership, Payment
)


class MemberRepository(BaseCRUD):
    """会员 仓库。

    管理会员资料。查询会员列表时会一并加载会员卡及其套餐，
    供上层推导会员状态。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create_member(self, fields: Dict[str, Any],
                      session: Optional[Session] = None) -> Member:
        """创建会员。

        Args:
            fields: 已校验的会员字段。
            session: 外部会话（可选）。

        Returns:
            新创建的 Member 对象。
        """
        return self.create(Member, session=session, **fields)

    def get_with_memberships(self, member_id: int,
                             session: Optional[Session] = None
                             ) -> Optional[Member]:
        """按ID查询会员，并加载会员卡与套餐。"""
        def _query(sess):
            return sess.query(Member).options(
                selectinload(Member.memberships)
                .selectinload(MemberMembership.plan)
            ).filter(Member.id == member_id).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def list_with_memberships(self, keyword: Optional[str] = None,
                              session: Optional[Session] = None
                              ) -> List[Member]:
        """查询会员列表（按创建时间倒序），并加载会员卡与套餐。

        Args:
            keyword: 按姓名或邮箱模糊搜索（不区分大小写，可选）。

        Returns:
            会员列表。
        """
        def _query(sess):
            query = sess.query(Member).options(
                selectinload(Member.memberships)
                .selectinload(MemberMembership.plan)
            )
            if keyword:
                pattern = like_pattern(keyword)
                query = query.filter(
                    or_(
                        Member.first_name.ilike(pattern, escape=LIKE_ESCAPE),
                        Member.last_name.ilike(pattern, escape=LIKE_ESCAPE),
                        (Member.first_name + " " + Member.last_name).ilike(pattern, escape=LIKE_ESCAPE),
                        Member.email.ilike(pattern, escape=LIKE_ESCAPE),
                    )
                )
            return query.order_by(Member.created_at.desc(), Member.id.desc()).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def search(self, keyword: str,
               session: Optional[Session] = None) -> List[Member]:
        """按姓名或邮箱搜索会员。"""
        return self.list_with_memberships(keyword, session=session)

    def count_dependents(self, member_id: int,
                         session: Optional[Session] = None) -> Tuple[int, int]:
        """统计会员的会员卡数与支付记录数。

        Returns:
            (会员卡数量, 支付记录数量)。
        """
        def _query(sess):
            memberships = sess.query(func.count(MemberMembership.id)).filter(
                MemberMembership.member_id == member_id
            ).scalar()
            payments = sess.query(func.count(Payment.id)).filter(
                Payment.member_id == member_id
            ).scalar()
            return memberships or 0, payments or 0

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def delete_member(self, member_id: int) -> bool:
        """删除会员。

        存在会员卡或支付记录时阻止删除；会员的提醒随会员一起删除。

        Returns:
            是否删除成功（会员不存在返回 False）。

        Raises:
            ReferentialError: 会员仍有会员卡或支付记录。
        """
        with self._get_session() as sess:
            member = sess.get(Member, member_id)
            if member is None:
                return False

            memberships, payments = self.count_dependents(member_id, session=sess)
            if memberships or payments:
                logger.warning(
                    f"Blocked deleting member {member_id}: "
                    f"{memberships} memberships, {payments} payments"
                )
                raise ReferentialError(
                    f"Member {member_id} cannot be deleted: it still has "
                    f"{memberships} membership(s) and {payments} payment(s)"
                )

            sess.delete(member)
            sess.commit()

        logger.info(f"Deleted Member id={member_id}")
        return True


class PlanRepository(BaseCRUD):
    """会员套餐 仓库。

    管理套餐定义。删除套餐前检查是否仍有使用中的会员卡。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get_plans(self, active_only: bool = False,
                  session: Optional[Session] = None) -> List[MembershipPlan]:
        """获取套餐列表（按ID排序）。

        Args:
            active_only: 是否只返回上架的套餐。
        """
        filters = {"is_active": True} if active_only else None
        return self.get_all(
            MembershipPlan, filters=filters,
            order_by=MembershipPlan.id, session=session
        )

    def count_active_members(self, plan_id: int,
                             session: Optional[Session] = None) -> int:
        """统计套餐下状态为 active 的会员卡数量。"""
        return self.count(
            MemberMembership,
            filters={"plan_id": plan_id, "status": "active"},
            session=session
        )

    def active_member_counts(self, session: Optional[Session] = None
                             ) -> Dict[int, int]:
        """所有套餐的 active 会员卡数量，{plan_id: count}。"""
        def _query(sess):
            rows = sess.query(
                MemberMembership.plan_id, func.count(MemberMembership.id)
            ).filter(
                MemberMembership.status == "active",
                MemberMembership.plan_id.isnot(None)
            ).group_by(MemberMembership.plan_id).all()
            return {plan_id: count for plan_id, count in rows}

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def delete_plan(self, plan_id: int) -> bool:
        """删除套餐。

        仍有 active 会员卡时阻止删除；历史会员卡保留日期与套餐名称快照，
        plan_id 置空。

        Returns:
            是否删除成功（套餐不存在返回 False）。

        Raises:
            ReferentialError: 套餐仍有 active 会员卡。
        """
        with self._get_session() as sess:
            plan = sess.get(MembershipPlan, plan_id)
            if plan is None:
                return False

            active = self.count_active_members(plan_id, session=sess)
            if active > 0:
                logger.warning(
                    f"Blocked deleting plan {plan_id}: {active} active members"
                )
                raise ReferentialError(
                    f"Plan '{plan.name}' cannot be deleted: "
                    f"{active} member(s) are still on it"
                )

            sess.query(MemberMembership).filter(
                MemberMembership.plan_id == plan_id
            ).update({MemberMembership.plan_id: None}, synchronize_session=False)
            sess.delete(plan)
            sess.commit()

        logger.info(f"Deleted MembershipPlan id={plan_id}")
        return True
