from pydantic import BaseModel, Field


class FeedConfig(BaseModel):
    """Configuration for the odds/outcome feed client."""

    base_url: str = "http://localhost:8080/api"

    # Price and outcome books, queried by market id
    match_odds_endpoint: str = "RMatchOdds"
    bookmaker_endpoint: str = "RBookmaker"
    fancy_endpoint: str = "RFancy"
    market_ids_param: str = "Mids"

    # Event catalogue
    events_endpoint: str = "GetMasterbysports"
    sport_id_param: str = "sid"
    bookmaker_markets_endpoint: str = "GetBookMaker"
    fancy_markets_endpoint: str = "GetFancy"
    event_id_param: str = "eventid"

    timeout_seconds: float = 10.0
    max_connections: int = 50
    max_keepalive_connections: int = 10
    max_retries: int = 3
    max_ids_per_request: int = Field(default=50, ge=1)
