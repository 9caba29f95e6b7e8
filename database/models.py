"""SQLAlchemy ORM 模型定义。

本模块定义了所有数据库表的ORM模型，包括：
- 会员、会员套餐等基础实体
- 会员卡（会员与套餐的一次订阅）、支付记录等业务记录
- 跟进提醒
"""
from typing import List, Optional
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Date, DateTime,
    DECIMAL, ForeignKey, JSON
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from datetime import datetime, date
from decimal import Decimal

# SQLAlchemy declarative base，所有模型都继承自此类
Base = declarative_base()

# 允许使用旧式类型注解
Base.__allow_unmapped__ = True


class Member(Base):
    """会员表模型。

    存储会员的基本资料与紧急联系人信息。会员的展示状态（Active/Expiring/Expired）
    不存储在此表，而是读取时根据当前会员卡的到期日推导。

    Attributes:
        id: 主键，自增整数。
        first_name: 名，必填，最大长度50字符。
        last_name: 姓，必填，最大长度50字符。
        email: 邮箱，必填，最大长度255字符。
        phone: 联系电话，可选。
        address: 地址，可选。
        emergency_contact_name: 紧急联系人姓名，可选。
        emergency_contact_phone: 紧急联系人电话，可选。
        notes: 备注，可选。
        status: 原始存储状态，active / inactive，默认active。
        created_at: 创建时间，自动设置为当前UTC时间。

    Relationships:
        memberships: 该会员的会员卡列表。
        payments: 该会员的支付记录列表。
        reminders: 该会员的提醒列表（随会员一起删除）。
    """
    __tablename__ = "members"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    first_name: str = Column(String(50), nullable=False)
    last_name: str = Column(String(50), nullable=False)
    email: str = Column(String(255), nullable=False)
    phone: Optional[str] = Column(String(30))
    address: Optional[str] = Column(String(255))
    emergency_contact_name: Optional[str] = Column(String(100))
    emergency_contact_phone: Optional[str] = Column(String(30))
    notes: Optional[str] = Column(Text)
    status: str = Column(String(20), default="active")  # active / inactive
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    # Relationships
    memberships: List["MemberMembership"] = relationship(
        "MemberMembership", back_populates="member"
    )
    payments: List["Payment"] = relationship("Payment", back_populates="member")
    reminders: List["Reminder"] = relationship(
        "Reminder", back_populates="member", cascade="all, delete-orphan"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class MembershipPlan(Base):
    """会员套餐表模型。

    Attributes:
        id: 主键，自增整数。
        name: 套餐名称，必填，最大长度100字符。
        price: 价格，DECIMAL(10,2)，>= 0。
        duration_months: 时长（月），>= 1。
        features: 功能列表（有序），JSON数组。
        description: 描述，可选。
        is_active: 是否上架，默认True。
        created_at: 创建时间。

    Relationships:
        memberships: 使用该套餐的会员卡列表。
    """
    __tablename__ = "membership_plans"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False)
    price: Decimal = Column(DECIMAL(10, 2), nullable=False)
    duration_months: int = Column(Integer, nullable=False)
    features: List[str] = Column(JSON, default=list)
    description: Optional[str] = Column(Text)
    is_active: bool = Column(Boolean, default=True)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    # Relationships
    memberships: List["MemberMembership"] = relationship(
        "MemberMembership", back_populates="plan"
    )


class MemberMembership(Base):
    """会员卡表模型。

    一条记录代表会员在某个日期区间内订阅了某个套餐。end_date 在开卡时
    按套餐时长计算并保存，之后套餐变化不会重新计算。plan_name 为开卡时
    的套餐名称快照，套餐删除后仍可展示。

    Attributes:
        id: 主键，自增整数。
        member_id: 会员ID，外键，必填。
        plan_id: 套餐ID，外键，套餐删除后置空。
        plan_name: 套餐名称快照。
        start_date: 开始日期，必填。
        end_date: 到期日期，必填。
        status: 存储状态，active / expired / cancelled 等，默认active。
        created_at: 创建时间。
    """
    __tablename__ = "member_memberships"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    member_id: int = Column(Integer, ForeignKey("members.id"), nullable=False)
    plan_id: Optional[int] = Column(
        Integer, ForeignKey("membership_plans.id", ondelete="SET NULL")
    )
    plan_name: Optional[str] = Column(String(100))
    start_date: date = Column(Date, nullable=False)
    end_date: date = Column(Date, nullable=False)
    status: str = Column(String(20), default="active")
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    # Relationships
    member: "Member" = relationship("Member", back_populates="memberships")
    plan: Optional["MembershipPlan"] = relationship(
        "MembershipPlan", back_populates="memberships"
    )
    payments: List["Payment"] = relationship("Payment", back_populates="membership")


class Payment(Base):
    """支付记录表模型。

    Attributes:
        id: 主键，自增整数。
        member_id: 会员ID，外键，必填。
        membership_id: 会员卡ID，外键，可选。
        amount: 金额，DECIMAL(10,2)，>= 0。
        method: 支付方式（Credit Card / Debit Card / Bank Transfer / Cash / Check）。
        payment_date: 支付日期，必填。
        status: completed / pending / failed，默认completed。
        transaction_id: 交易流水号，可选。
        description: 说明，可选。
        created_at: 创建时间。
    """
    __tablename__ = "payments"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    member_id: int = Column(Integer, ForeignKey("members.id"), nullable=False)
    membership_id: Optional[int] = Column(
        Integer, ForeignKey("member_memberships.id")
    )
    amount: Decimal = Column(DECIMAL(10, 2), nullable=False)
    method: str = Column(String(30), nullable=False)
    payment_date: date = Column(Date, nullable=False)
    status: str = Column(String(20), default="completed")
    transaction_id: Optional[str] = Column(String(50))
    description: Optional[str] = Column(Text)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    # Relationships
    member: "Member" = relationship("Member", back_populates="payments")
    membership: Optional["MemberMembership"] = relationship(
        "MemberMembership", back_populates="payments"
    )


class Reminder(Base):
    """跟进提醒表模型。

    提醒只在用户手动操作时在 pending / completed 之间切换，不会自动过期。

    Attributes:
        id: 主键，自增整数。
        member_id: 会员ID，外键，必填。
        membership_id: 会员卡ID，外键，可选。
        reminder_type: membership_expiry / payment_due / payment_overdue / follow_up。
        due_date: 截止日期，必填。
        message: 提醒内容，可选。
        priority: high / medium / low，默认medium。
        status: pending / completed，默认pending。
        created_at: 创建时间。
    """
    __tablename__ = "reminders"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    member_id: int = Column(Integer, ForeignKey("members.id"), nullable=False)
    membership_id: Optional[int] = Column(
        Integer, ForeignKey("member_memberships.id")
    )
    reminder_type: str = Column(String(30), nullable=False)
    due_date: date = Column(Date, nullable=False)
    message: Optional[str] = Column(String(255))
    priority: str = Column(String(10), default="medium")
    status: str = Column(String(20), default="pending")
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    # Relationships
    member: "Member" = relationship("Member", back_populates="reminders")
