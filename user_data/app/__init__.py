"""
Aggregate user data cache for the FoodList access layer.

Produces an eventually-consistent view of a profile owner's data
(profile, reviews, lists, restaurants) backed by the request gateway:
- Persisted per-entity TTL records with stale-while-revalidate
- In-flight deduplication of identical fetches
- Debounced loads and cursor-paginated restaurants

Structure:
- app.service: UserDataCache orchestration.
- app.domain: Page payloads, access levels and the aggregate state.
- app.caching: Persisted entity records over a key-value store.
- app.container: Composition root wiring store, gateway and cache.
"""
