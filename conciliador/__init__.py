"""Conciliador de Dados de Vendas: chassis-based reconciliation of sales,
satisfaction surveys and resend worklists."""

__version__ = "0.1.0"
