"""
Persistence layer.

- database: engine, session scope, init_db
- models: SQLAlchemy tables for cards, review logs, sessions, oracle inputs
- base: store and oracle interfaces used by the study services
- card_store / session_store: SQL implementations of the stores
- oracles: gap / mastery oracles over the oracle tables
"""
