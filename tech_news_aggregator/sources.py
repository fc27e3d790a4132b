DEFAULT_SOURCES = [
    # Hacker News
    {
        "name": "Hacker News Frontpage",
        "url": "https://hnrss.org/frontpage",
        "kind": "rss",
        "category": "Tech",
        "authority": "community",
        "priority": 10,
    },
    {
        "name": "Hacker News AI",
        "url": "https://hnrss.org/newest?q=AI+OR+machine+learning+OR+GPT+OR+LLM",
        "kind": "rss",
        "category": "Research",
        "authority": "community",
        "priority": 9,
    },
    {
        "name": "HN Algolia Front Page",
        "url": "https://hn.algolia.com/api/v1/search?tags=front_page",
        "kind": "api",
        "category": "Tech",
        "authority": "community",
        "priority": 8,
        "options": {
            "items_key": "hits",
            "fields": {
                "title": "title",
                "link": "url",
                "published": "created_at",
                "likes": "points",
                "comments": "num_comments",
            },
        },
    },
    # GitHub trending (scraped)
    {
        "name": "GitHub Trending (all)",
        "url": "https://github.com/trending",
        "kind": "web",
        "category": "Product",
        "authority": "community",
        "priority": 7,
        "options": {"strategy": "github_trending", "min_stars": 1000},
    },
    {
        "name": "GitHub Trending Python",
        "url": "https://github.com/trending/python",
        "kind": "web",
        "category": "Product",
        "authority": "community",
        "priority": 6,
        "options": {"strategy": "github_trending", "min_stars": 1000},
    },
    {
        "name": "GitHub Trending Rust",
        "url": "https://github.com/trending/rust",
        "kind": "web",
        "category": "Product",
        "authority": "community",
        "priority": 5,
        "options": {"strategy": "github_trending", "min_stars": 1000},
    },
    # Tech media
    {
        "name": "Dev.to AI Tag",
        "url": "https://dev.to/feed/tag/ai",
        "kind": "rss",
        "category": "Tech",
        "authority": "community",
    },
    {
        "name": "Reddit MachineLearning",
        "url": "https://www.reddit.com/r/MachineLearning/.rss",
        "kind": "rss",
        "category": "Research",
        "authority": "community",
    },
    {
        "name": "The Verge AI",
        "url": "https://www.theverge.com/ai-artificial-intelligence/rss/index.xml",
        "kind": "rss",
        "category": "Industry",
        "authority": "media",
    },
    {
        "name": "Ars Technica AI",
        "url": "https://arstechnica.com/ai/feed/",
        "kind": "rss",
        "category": "Industry",
        "authority": "media",
    },
    {
        "name": "TechCrunch AI",
        "url": "https://techcrunch.com/category/artificial-intelligence/feed/",
        "kind": "rss",
        "category": "Industry",
        "authority": "media",
    },
    {
        "name": "OpenAI News",
        "url": "https://openai.com/news/rss.xml",
        "kind": "rss",
        "category": "Product",
        "authority": "official",
        "priority": 10,
    },
    {
        "name": "arXiv cs.AI",
        "url": "https://rss.arxiv.org/rss/cs.AI",
        "kind": "rss",
        "category": "Research",
        "authority": "research",
        "priority": 8,
    },
    # Chinese tech sites
    {
        "name": "OSChina 资讯",
        "url": "https://www.oschina.net/news/rss",
        "kind": "rss",
        "category": "Tech",
        "authority": "media",
    },
    {
        "name": "V2EX 技术",
        "url": "https://www.v2ex.com/index.xml",
        "kind": "rss",
        "category": "Fun",
        "authority": "community",
    },
    {
        "name": "InfoQ 中文",
        "url": "https://www.infoq.cn/feed",
        "kind": "rss",
        "category": "Tech",
        "authority": "media",
    },
    # Rendered single-page app; needs a headless browser
    {
        "name": "Product Hunt",
        "url": "https://www.producthunt.com/",
        "kind": "headless",
        "category": "Product",
        "authority": "community",
        "active": False,
        "options": {"selector": "a[href^='/products/']", "same_domain_only": True},
    },
]
