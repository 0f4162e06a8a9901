"""Default source catalog inserted by ``contentintel sources seed``."""

# Tier 1: official platform announcements
# Tier 2: recognised practitioners and trade press
# Tier 3: community discussion and marketplace blogs
DEFAULT_SOURCES: list[dict] = [
    {"name": "Google Search Central Blog", "url": "https://developers.google.com/search/blog/feed/atom", "tier": "tier_1", "category": "General SEO", "fetch_method": "rss"},
    {"name": "Google Ads Changelog", "url": "https://ads.google.com/home/resources/changelog/", "tier": "tier_1", "category": "Meta Ads", "fetch_method": "webpage"},
    {"name": "Google Maps Platform Blog", "url": "https://cloud.google.com/blog/products/maps-platform/rss", "tier": "tier_1", "category": "Maps", "fetch_method": "rss"},
    {"name": "GBP Help Center", "url": "https://support.google.com/business/answer/9292476", "tier": "tier_1", "category": "GBP", "fetch_method": "webpage"},
    {"name": "Local Service Ads Help", "url": "https://support.google.com/localservices/", "tier": "tier_1", "category": "LSA", "fetch_method": "webpage"},
    {"name": "Whitespark Blog", "url": "https://whitespark.ca/blog/feed/", "tier": "tier_2", "category": "GBP", "fetch_method": "rss"},
    {"name": "BrightLocal Blog", "url": "https://www.brightlocal.com/blog/feed/", "tier": "tier_2", "category": "GBP", "fetch_method": "rss"},
    {"name": "Sterling Sky Blog", "url": "https://sterlingsky.ca/feed/", "tier": "tier_2", "category": "GBP", "fetch_method": "rss"},
    {"name": "Near Media", "url": "https://nearmedia.co/feed/", "tier": "tier_2", "category": "General SEO", "fetch_method": "rss"},
    {"name": "Local Search Forum", "url": "https://www.localsearchforum.com/forums/-/index.rss", "tier": "tier_2", "category": "GBP", "fetch_method": "rss"},
    {"name": "Moz Local SEO", "url": "https://moz.com/blog/feed", "tier": "tier_2", "category": "General SEO", "fetch_method": "rss"},
    {"name": "Search Engine Journal", "url": "https://www.searchenginejournal.com/feed/", "tier": "tier_2", "category": "General SEO", "fetch_method": "rss"},
    {"name": "Search Engine Land", "url": "https://searchengineland.com/feed", "tier": "tier_2", "category": "General SEO", "fetch_method": "rss"},
    {"name": "Joy Hawkins YouTube", "url": "https://www.youtube.com/c/JoyHawkins", "tier": "tier_2", "category": "GBP", "fetch_method": "youtube", "fetch_config": {"channelId": "UCZIMOb3JBU6VA6lsM5v7sYw"}},
    {"name": "Darren Shaw YouTube", "url": "https://www.youtube.com/@DarrenShaw", "tier": "tier_2", "category": "GBP", "fetch_method": "youtube", "fetch_config": {"channelId": "UCaLMc8Z4WKe3r0btl2EUQSA"}},
    {"name": "LocalU", "url": "https://localu.org/feed/", "tier": "tier_2", "category": "GBP", "fetch_method": "rss"},
    {"name": "Mike Blumenthal", "url": "https://blumenthals.com/blog/feed/", "tier": "tier_2", "category": "GBP", "fetch_method": "rss"},
    {"name": "Reddit r/SEO", "url": "https://www.reddit.com/r/SEO/", "tier": "tier_3", "category": "General SEO", "fetch_method": "reddit", "fetch_config": {"subreddit": "SEO"}},
    {"name": "Reddit r/LocalSEO", "url": "https://www.reddit.com/r/LocalSEO/", "tier": "tier_3", "category": "GBP", "fetch_method": "reddit", "fetch_config": {"subreddit": "LocalSEO"}},
    {"name": "Reddit r/GoogleAds", "url": "https://www.reddit.com/r/GoogleAds/", "tier": "tier_3", "category": "Meta Ads", "fetch_method": "reddit", "fetch_config": {"subreddit": "GoogleAds"}},
    {"name": "Yelp Business Blog", "url": "https://business.yelp.com/blog/", "tier": "tier_3", "category": "Yelp", "fetch_method": "webpage"},
    {"name": "Nextdoor Business Blog", "url": "https://business.nextdoor.com/blog", "tier": "tier_3", "category": "Nextdoor", "fetch_method": "webpage"},
    {"name": "Angi Pro Blog", "url": "https://www.angi.com/pro/blog/", "tier": "tier_3", "category": "Angi", "fetch_method": "webpage"},
    {"name": "Thumbtack Pro Blog", "url": "https://www.thumbtack.com/blog/", "tier": "tier_3", "category": "Thumbtack", "fetch_method": "webpage"},
    {"name": "Search Engine Roundtable", "url": "https://www.seroundtable.com/feed", "tier": "tier_3", "category": "General SEO", "fetch_method": "rss"},
]
