# meshgate

meshgate provides the parts of a proxy-mesh gateway as plain Python objects. These include domain
compliance checks, GeoIP lookup, users and roles, API keys, rate limiting, traffic shaping,
caching, auditing and federation between regions. It uses only the standard library.

## What is inside

| Module | Purpose |
| --- | --- |
| `meshgate.compliance` | `ComplianceService` checks targets against blocked domains, given as exact names or `*.suffix` wildcards. It also flags government and financial domains. `extract_domain` strips the scheme and the path from a target. |
| `meshgate.geoip` | `GeoIPService.lookup` maps an IPv4 address to a country code using a built-in range table. `load_csv` reads ranges from a CSV file into `entries`. `ip_in_range` tests an address against an inclusive range. |
| `meshgate.connpool` | `ConnPool` keeps idle TCP connections for each address, up to a cap per address. |
| `meshgate.dedup` | `RequestDedup` detects repeated requests within a time window and returns `X-Dedup` headers. |
| `meshgate.deprecation` | `DeprecationService.headers_for` returns `Deprecation` and `Link` headers for legacy paths. |
| `meshgate.rbac` | `RBACService` and `RBACMiddleware` manage users and roles (`Role`) and check permissions. Failures raise `AccessDenied`, which carries an HTTP status. |
| `meshgate.federation` | `FederationService` tracks peer gateways and the node ids of each region. It can also run heartbeat and sync loops in background threads. |
| `meshgate.client_ratelimit` | `ClientRateLimiter` applies fixed-window request limits per client IP and raises `RateLimitExceeded` when a limit is reached. Loopback and private addresses are exempt. |
| `meshgate.apikey` | `APIKeyService` creates, validates, revokes and lists API keys, which are stored only as SHA-256 hashes. It also holds a rate limit for each key. |
| `meshgate.audit` | `AuditLogger` writes JSON-lines `AuditEntry` records to a file and/or a store, and queries them by date and action. |
| `meshgate.analytics` | `TrafficAnalytics` keeps counters for requests, bytes and countries, and builds an `AnalyticsSummary`. |
| `meshgate.batch` | `BatchProcessor` runs typed operations through registered handlers. `NodeHealthScore` scores and ranks nodes. `KeyPriority` assigns request priorities to API keys. |
| `meshgate.cost` | `CostEstimator` prices requests and months of traffic, with a multiplier for each client. `AuditRetention` trims audit lists to a retention policy. |
| `meshgate.broadcast` | `PeerBroadcaster` queues payloads for subscribed nodes and keeps a bounded history. `ConfigNotifier` announces configuration reloads. `ResponseCompressor` adds a compression header. |
| `meshgate.cache` | `ResponseCache` caches responses with a TTL. `NodeRetryHandler` retries with linear backoff and raises `RetriesExhausted`. `RateLimitHeaders` builds `X-RateLimit-*` and `Retry-After` headers. |
| `meshgate.shaping` | `TrafficShaper` limits bandwidth per client with a token bucket. `DDoSProtection` blocks clients that fail too often within a window. |

## Stores

Several classes take a `store` argument:

- `APIKeyService`
- `AuditLogger`
- `TrafficAnalytics`
- `ClientRateLimiter`
- `ResponseCache`
- `TrafficShaper`
- `DDoSProtection`
- `KeyPriority`
- `CostEstimator`
- `AuditRetention`
- `PeerBroadcaster`

The store can be a Redis client, or any object that has the Redis-style methods the class calls, such as `get`, `set`, `incr`, `hset`, `hgetall`, `keys` and `rpush`.

- `APIKeyService` and `TrafficAnalytics` need a store.
- `AuditLogger.get_entries` also needs one.
- Most of the other classes fall back to in-memory state when no store is given.

## A few examples

```python
from meshgate.compliance import ComplianceService
from meshgate.geoip import GeoIPService
from meshgate.rbac import RBACService, Role

ComplianceService(blocked_domains=["*.gov"]).is_blocked("https://irs.gov/taxes")  # True

geo = GeoIPService()
geo.lookup("8.8.8.8")          # "US"

rbac = RBACService()
password = "password"
user = rbac.create_user("alice", password, "alice@example.com", [Role.OPERATOR])
rbac.has_permission(user, "sessions", "read")    # True
rbac.has_permission(user, "capacity", "write")   # False
```

Failures are raised as exceptions. Some examples:

| Failure | Exception |
| --- | --- |
| Creating a user that already exists | `ValueError` |
| Looking up an unknown user | `LookupError` |
| Asking for nodes of a region nothing was heard from | `LookupError` |
| A federation message of unknown type | `ValueError` |

## What it does not do

meshgate contains only the components. It does not include:

- **An HTTP server or routes.** Methods return values or header dictionaries for you to attach to responses.
- **A command-line client.**
- **A node matchmaker.** `FederationService` accepts any object that has `get_all_nodes()` and `get_node_status(node_id)`.
- **A storage backend.** Shared state lives in the store you pass in.

## Running the tests

```
pip install "meshgate[test]"
pytest
```