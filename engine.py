"""Wires the store, clock, caches and services into one object."""
from accounts import AccountService
from catalog import CatalogService
from clock import system_clock
from costs import HOURS_PER_MONTH, order_cost
from kpis import compute_kpis, dashboard_stats, monthly_trend
from ledger import StockLedger, low_stock
from repository import Repository
from schedules import DEFAULT_DAILY_UPTIME_HOURS
from scoping import EVERYTHING
from service_requests import RequestService
from work_orders import WorkOrderService, elapsed_duration


class MaintenanceEngine:

    def __init__(self, store, clock=system_clock, hours_per_month=HOURS_PER_MONTH,
                 default_daily_hours=DEFAULT_DAILY_UPTIME_HOURS):
        self.store = store
        self.clock = clock
        self.hours_per_month = hours_per_month
        self.default_daily_hours = default_daily_hours

        self.repository = Repository(store)
        self.ledger = StockLedger(store)
        self.work_orders = WorkOrderService(store, self.ledger, clock)
        self.requests = RequestService(store, self.work_orders, clock)
        self.accounts = AccountService(store)
        self.catalog = CatalogService(store)

    def close(self):
        self.repository.close()

    def order_cost(self, order):
        return order_cost(order, self.repository.parts_by_id(),
                          self.repository.technicians_by_username(), self.hours_per_month)

    def elapsed(self, order):
        return elapsed_duration(order, self.clock.now())

    def low_stock_parts(self, scope=EVERYTHING):
        return low_stock(scope.filter('part', self.repository.parts()))

    def kpis(self, start, end, machine_id=None, scope=EVERYTHING):
        repo = self.repository
        return compute_kpis(
            repo.work_orders(), repo.machines(), repo.parts_by_id(), repo.technicians_by_username(),
            start, end, machine_id=machine_id, scope=scope,
            hours_per_month=self.hours_per_month, default_hours=self.default_daily_hours,
        )

    def dashboard(self, start, end, scope=EVERYTHING):
        repo = self.repository
        stats = dashboard_stats(
            repo.work_orders(), repo.machines(), repo.requests(), repo.parts_by_id(),
            repo.technicians_by_username(), start, end, scope=scope,
            hours_per_month=self.hours_per_month,
        )
        stats['trend'] = monthly_trend(repo.work_orders(), start, scope=scope)
        return stats
