"""请求模型与校验。

每个写操作对应一个强类型请求模型，表单传入的字符串在这里解析为
数字/日期，校验失败统一转换为 business.errors.ValidationError，
保证原始字符串不会进入业务逻辑和数据库层。
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, EmailStr, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from business.errors import ValidationError

T = TypeVar("T", bound=BaseModel)

PaymentMethod = Literal["Credit Card", "Debit Card", "Bank Transfer", "Cash", "Check"]
PaymentStatus = Literal["completed", "pending", "failed"]
MemberStatus = Literal["active", "inactive"]
ReminderType = Literal["membership_expiry", "payment_due", "payment_overdue", "follow_up"]
ReminderStatus = Literal["pending", "completed"]
ReminderPriority = Literal["high", "medium", "low"]


def parse_features(raw: Union[str, List[str], None]) -> List[str]:
    """解析逗号分隔的功能列表。

    每段去除首尾空白，丢弃空段，保持原有顺序。

    Example::

        parse_features("Gym Access, , Pool ")  # ["Gym Access", "Pool"]
    """
    if raw is None:
        return []
    parts = raw.split(",") if isinstance(raw, str) else raw
    return [str(p).strip() for p in parts if p is not None and str(p).strip()]


def _required_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} is required")
    return value.strip()


class MemberCreate(BaseModel):
    """新增会员请求。可同时指定套餐与开始日期，一并开卡。"""

    first_name: str
    last_name: str
    email: EmailStr
    phone: Optional[str] = None
    address: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    notes: Optional[str] = None
    status: MemberStatus = "active"
    plan_id: Optional[int] = None
    start_date: Optional[date] = None

    @field_validator("first_name", "last_name", "email", mode="before")
    @classmethod
    def _not_blank(cls, v, info):
        return _required_text(v, info.field_name)


class MemberUpdate(BaseModel):
    """修改会员请求，只更新传入的字段。"""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[MemberStatus] = None

    @field_validator("first_name", "last_name", "email", mode="before")
    @classmethod
    def _not_blank(cls, v, info):
        # 显式传入的必填字段不能改为空
        return _required_text(v, info.field_name)

    @field_validator("status", mode="before")
    @classmethod
    def _status_not_null(cls, v):
        if v is None:
            raise ValueError("status cannot be null")
        return v


class PlanCreate(BaseModel):
    """新增/修改套餐请求"""

    name: str
    price: Decimal = Field(ge=0)
    duration_months: int = Field(ge=1)
    features: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    is_active: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def _not_blank(cls, v, info):
        return _required_text(v, info.field_name)

    @field_validator("features", mode="before")
    @classmethod
    def _split_features(cls, v):
        return parse_features(v)


class PlanActiveUpdate(BaseModel):
    """上架/下架套餐请求"""

    is_active: bool


class MembershipCreate(BaseModel):
    """开卡请求"""

    member_id: int
    plan_id: int
    start_date: date = Field(default_factory=date.today)


class PaymentCreate(BaseModel):
    """记录支付请求"""

    member_id: int
    amount: Decimal = Field(ge=0)
    method: PaymentMethod
    payment_date: date = Field(default_factory=date.today)
    status: PaymentStatus = "completed"
    membership_id: Optional[int] = None
    description: Optional[str] = None
    transaction_id: Optional[str] = None


class ReminderCreate(BaseModel):
    """新增提醒请求"""

    member_id: int
    reminder_type: ReminderType
    due_date: date
    membership_id: Optional[int] = None
    message: Optional[str] = None
    priority: ReminderPriority = "medium"
    status: ReminderStatus = "pending"


class ExpirySyncRequest(BaseModel):
    """生成到期提醒请求，window_days 为空时使用默认窗口"""

    window_days: Optional[int] = Field(default=None, ge=0)


def _describe(err: Dict[str, Any]) -> Dict[str, Any]:
    field = ".".join(str(p) for p in err.get("loc", ())) or "__root__"
    message = err.get("msg", "invalid value")
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return {"field": field, "message": message}


def parse_request(model_cls: Type[T], fields: Union[T, Dict[str, Any], None]) -> T:
    """把原始字段字典解析为请求模型。

    Args:
        model_cls: 请求模型类。
        fields: 原始字段（表单/JSON），或已解析的模型实例。

    Returns:
        校验通过的模型实例。

    Raises:
        ValidationError: 字段缺失或格式错误。
    """
    if isinstance(fields, model_cls):
        return fields
    try:
        return model_cls.model_validate(fields or {})
    except PydanticValidationError as e:
        errors = [_describe(err) for err in e.errors()]
        summary = "; ".join(f"{x['field']}: {x['message']}" for x in errors)
        raise ValidationError(f"Invalid request: {summary}", errors) from e
