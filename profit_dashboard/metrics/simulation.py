"""货到付款（COD）利润模拟：上线前按假设的转化漏斗估算利润，并保存方案。"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import date
from typing import Dict, List, Optional

from ..errors import ValidationError


@dataclass(frozen=True)
class SimulationInputs:
    """
    模拟输入。

    属性:
        total_orders (float): 总订单（线索）数。
        confirmation_rate (float): 确认率（%）。
        delivery_rate (float): 签收率（%）。
        selling_price (float): 售价。
        product_cost (float): 单件成本。
        service_fee (float): 单笔服务费。
        ads_cost (float): 广告总花费。
        other_cost (float): 其他一次性成本。

    默认值为一组典型的上线前假设，未提供的字段沿用默认值。
    """

    total_orders: float = 180.0
    confirmation_rate: float = 70.0
    delivery_rate: float = 40.0
    selling_price: float = 46.0
    product_cost: float = 20.0
    service_fee: float = 5.7
    ads_cost: float = 310.0
    other_cost: float = 0.0


@dataclass(frozen=True)
class CostBreakdown:
    product: float
    service: float
    ads: float
    other: float


@dataclass(frozen=True)
class SimulationResults:
    """
    模拟结果。

    属性:
        confirmed_orders (float): 确认订单数。
        delivered_orders (float): 签收订单数。
        total_revenue (float): 收入。
        total_costs (float): 成本合计。
        cost_breakdown (CostBreakdown): 成本拆分。
        total_profit (float): 利润。
        profit_per_delivered (float): 单笔签收利润，无签收时为 0。
        cpd (float): 单笔签收的商品与服务成本。
        cpa (float): 广告 / 总订单，无订单时为 0。
        cpa_delivered (float): 广告 / 签收订单，无签收时为 0。
        tdc (float): 单笔签收总成本 = cpd + cpa_delivered。
    """

    confirmed_orders: float
    delivered_orders: float
    total_revenue: float
    total_costs: float
    cost_breakdown: CostBreakdown
    total_profit: float
    profit_per_delivered: float
    cpd: float
    cpa: float
    cpa_delivered: float
    tdc: float


def simulate(inputs: SimulationInputs) -> SimulationResults:
    """
    功能说明:
        按 总订单 -> 确认 -> 签收 的漏斗计算收入、成本与单位经济指标。
    参数:
        inputs (SimulationInputs): 模拟输入。
    返回:
        SimulationResults: 模拟结果。
    """
    confirmed_orders = inputs.total_orders * inputs.confirmation_rate / 100
    delivered_orders = confirmed_orders * inputs.delivery_rate / 100
    total_revenue = delivered_orders * inputs.selling_price

    breakdown = CostBreakdown(
        product=inputs.product_cost * delivered_orders,
        service=inputs.service_fee * delivered_orders,
        ads=inputs.ads_cost,
        other=inputs.other_cost,
    )
    total_costs = breakdown.product + breakdown.service + breakdown.ads + breakdown.other
    total_profit = total_revenue - total_costs

    cpd = inputs.product_cost + inputs.service_fee
    cpa = inputs.ads_cost / inputs.total_orders if inputs.total_orders > 0 else 0.0
    cpa_delivered = inputs.ads_cost / delivered_orders if delivered_orders > 0 else 0.0

    return SimulationResults(
        confirmed_orders=confirmed_orders,
        delivered_orders=delivered_orders,
        total_revenue=total_revenue,
        total_costs=total_costs,
        cost_breakdown=breakdown,
        total_profit=total_profit,
        profit_per_delivered=total_profit / delivered_orders if delivered_orders > 0 else 0.0,
        cpd=cpd,
        cpa=cpa,
        cpa_delivered=cpa_delivered,
        tdc=cpd + cpa_delivered,
    )


@dataclass(frozen=True)
class SavedScenario:
    """已保存的模拟方案，保存时刻的输入与结果的不可变副本。"""

    id: str
    name: str
    date: str
    inputs: SimulationInputs
    results: SimulationResults

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "date": self.date,
            "inputs": asdict(self.inputs),
            "results": asdict(self.results),
        }


def inputs_from_dict(payload: Dict[str, object]) -> SimulationInputs:
    return SimulationInputs(**{key: float(value) for key, value in payload.items()})  # type: ignore[arg-type]


def results_from_dict(payload: Dict[str, object]) -> SimulationResults:
    data = dict(payload)
    breakdown = CostBreakdown(**data.pop("cost_breakdown"))  # type: ignore[arg-type]
    return SimulationResults(cost_breakdown=breakdown, **data)  # type: ignore[arg-type]


class ScenarioBook:
    """已保存方案的列表，按保存顺序排列。"""

    def __init__(self, scenarios: Optional[List[SavedScenario]] = None) -> None:
        self._scenarios: Dict[str, SavedScenario] = {item.id: item for item in scenarios or []}

    def save(
        self,
        name: str,
        inputs: SimulationInputs,
        results: Optional[SimulationResults] = None,
        *,
        today: Optional[date] = None,
    ) -> SavedScenario:
        """
        功能说明:
            以给定名称保存方案；未提供结果时按输入重新计算。
        参数:
            name (str): 方案名称，不能为空。
            inputs (SimulationInputs): 保存时刻的输入。
            results (Optional[SimulationResults]): 保存时刻的结果。
            today (Optional[date]): 保存日期，默认当天。
        返回:
            SavedScenario: 新保存的方案。
        """
        if not name or not name.strip():
            raise ValidationError("方案名称不能为空。")
        scenario = SavedScenario(
            id=str(uuid.uuid4()),
            name=name.strip(),
            date=(today or date.today()).isoformat(),
            inputs=inputs,
            results=results if results is not None else simulate(inputs),
        )
        self._scenarios[scenario.id] = scenario
        return scenario

    def add(self, scenario: SavedScenario) -> None:
        self._scenarios[scenario.id] = scenario

    def list(self) -> List[SavedScenario]:
        return list(self._scenarios.values())

    def delete(self, scenario_id: str) -> None:
        self._scenarios.pop(scenario_id, None)
