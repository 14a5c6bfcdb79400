"""
StatCoder: Assisted Statistical Classification Coding
=======================================================
Maps free-text records (job titles, industry activities, consumption items)
onto ISCO-08 / ISIC Rev. 4 / COICOP 2018 codes.

Hexagonal (Ports & Adapters) architecture.

Layer map
─────────────────────────────────────────────────────
  config/       All tuneable settings & prompt strings
  domain/       Pure business objects (models, exceptions); no I/O
  ports/        Abstract interfaces (Python Protocols)
  adapters/     Concrete implementations of each Port (Gemini, OpenAI, Postgres…)
  services/     Reference store, fuzzy index, resolver, batch orchestrator
  interfaces/   Delivery layer: CLI
  tests/        Full test suite: unit / integration / e2e

Resolution tiers, cheapest first:
  1. Local dictionary hit (fuzzy, strict threshold)  → confidence "Reference"
  2. Similar dictionary entries as few-shot examples → fed to the LLM
  3. LLM classifier                                  → High / Medium / Low
"""
__version__ = "1.0.0"
