"""End-to-end sample scenarios."""

from installment_engine.scenarios.portfolio import InstallmentPortfolioScenario

__all__ = ["InstallmentPortfolioScenario"]
