"""
健身房业务配置 - 默认套餐与枚举值

新门店可以实现自己的配置，替换默认配置。
"""
from abc import ABC, abstractmethod
from typing import List, Dict, Any, get_args

from business.requests import PaymentMethod


class GymConfig(ABC):
    """业务配置抽象基类"""

    @abstractmethod
    def get_default_plans(self) -> List[Dict[str, Any]]:
        """获取初始化时写入的默认会员套餐"""
        pass

    @abstractmethod
    def get_payment_methods(self) -> List[str]:
        """获取支持的支付方式"""
        pass


class StandardGymConfig(GymConfig):
    """标准健身房配置"""

    def get_default_plans(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": "Basic Plan",
                "price": 49,
                "duration_months": 1,
                "features": ["Gym Access", "Locker Room", "Basic Equipment"],
            },
            {
                "name": "Premium Plan",
                "price": 79,
                "duration_months": 1,
                "features": [
                    "All Basic Features", "Group Classes",
                    "Personal Training", "Nutrition Guidance",
                ],
            },
            {
                "name": "Annual Plan",
                "price": 599,
                "duration_months": 12,
                "features": [
                    "All Premium Features", "Massage Therapy",
                    "Diet Planning", "Priority Booking",
                ],
            },
            {
                "name": "Student Plan",
                "price": 39,
                "duration_months": 1,
                "features": ["Gym Access", "Locker Room", "Study Area"],
            },
        ]

    def get_payment_methods(self) -> List[str]:
        return list(PAYMENT_METHODS)


# 支付方式（固定枚举，与请求模型保持一致）
PAYMENT_METHODS = get_args(PaymentMethod)


# 全局业务配置实例（可以在 app.py 中替换）
gym_config: GymConfig = StandardGymConfig()
