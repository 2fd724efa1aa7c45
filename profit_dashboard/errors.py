"""分析引擎对外暴露的异常类型。"""


class DashboardError(Exception):
    """所有业务异常的基类。"""


class ValidationError(DashboardError):
    """输入缺失或不合法，例如保存快照时期间名称为空。"""


class NotFoundError(DashboardError):
    """操作的快照、国家或商品已不存在。"""


class PersistenceError(DashboardError):
    """持久化层（数据库）失败的统一类别，引擎本身不做重试。"""
