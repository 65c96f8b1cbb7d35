"""IPO Lens - multi-source Indian IPO intelligence.

## Architecture Layers

1. **Core** (`ipolens.core`)
   - Configuration management
   - Error handling
   - Abstract interfaces

2. **Scrapers** (`ipolens.scrapers`)
   - Chittorgarh, InvestorGain, Groww, NSE and NSETools sources
   - Normalization utilities for noisy text fields

3. **Aggregation** (`ipolens.aggregation`)
   - Concurrent fan-out with per-source timeouts
   - Priority-based field merging and confidence

4. **Scoring** (`ipolens.scoring`)
   - Fundamentals, valuation and governance scores
   - Red flags, pros and risk level

5. **Storage & Orchestration** (`ipolens.storage`, `ipolens.orchestration`)
   - SQL persistence and Parquet snapshots
   - Sync runs, market monitor and Prefect flows

6. **Interfaces** (`ipolens.api`, `ipolens.cli`)
   - FastAPI read/admin API
   - Typer command line
"""

__version__ = "0.1.0"
