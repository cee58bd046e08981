# StockLedger - daily stock activity ledger and XBS reconciliation
