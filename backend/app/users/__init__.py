"""User records (the session store).

Services:
    - UserStore: DuckDB-backed identity lookup used by the token verifier
      and the chat application layer.
"""
