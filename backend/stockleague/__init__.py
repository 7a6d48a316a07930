"""Fantasy stock-league ledger: portfolios, trades and league formation."""
