"""
Bundled navigation data.

This module is the read-only dataset shipped with the package. It uses the
same layout that `cloudnav export --format python` writes, so an exported
remote store can replace it verbatim.
"""
import html

DATA_VERSION = {
    'version': '1.0.0',
    'timestamp': 1735689600000,
    'source': 'bundled',
}

CATEGORIES = [
    {'id': 'dev',
     'name': 'Development',
     'icon': '💻',
     'description': 'Code hosting, documentation and developer tools',
     'addDate': 1735689600000},
    {'id': 'design',
     'name': 'Design',
     'icon': '🎨',
     'description': 'Design resources, icons and color tools',
     'addDate': 1735689600000},
    {'id': 'learning',
     'name': 'Learning',
     'icon': '📚',
     'description': 'Courses, references and tutorials',
     'addDate': 1735689600000},
    {'id': 'tools',
     'name': 'Tools',
     'icon': '🛠️',
     'description': 'Everyday online utilities',
     'addDate': 1735689600000},
]

SITES = [
    {'id': 'github',
     'title': 'GitHub',
     'url': 'https://github.com',
     'description': 'Code hosting platform for version control and collaboration',
     'shortDesc': 'Code hosting',
     'icon': '/images/github.svg',
     'category': 'dev',
     'addDate': 1735689600000},
    {'id': 'python-docs',
     'title': 'Python Documentation',
     'url': 'https://docs.python.org/3/',
     'description': 'Official Python language and standard library reference',
     'shortDesc': 'Python reference',
     'icon': '/images/python.svg',
     'category': 'dev',
     'addDate': 1735689600000},
    {'id': 'mdn',
     'title': 'MDN Web Docs',
     'url': 'https://developer.mozilla.org',
     'description': 'Documentation for web standards: HTML, CSS and JavaScript',
     'shortDesc': 'Web platform docs',
     'icon': '/images/mdn.svg',
     'category': 'dev',
     'addDate': 1735689600000},
    {'id': 'figma',
     'title': 'Figma',
     'url': 'https://www.figma.com',
     'description': 'Collaborative interface design tool',
     'shortDesc': 'Interface design',
     'icon': '/images/figma.svg',
     'category': 'design',
     'addDate': 1735689600000},
    {'id': 'coolors',
     'title': 'Coolors',
     'url': 'https://coolors.co',
     'description': 'Color palette generator',
     'shortDesc': 'Color palettes',
     'icon': '/images/default.svg',
     'category': 'design',
     'addDate': 1735689600000},
    {'id': 'realpython',
     'title': 'Real Python',
     'url': 'https://realpython.com',
     'description': 'Python tutorials and articles',
     'shortDesc': 'Python tutorials',
     'icon': '/images/default.svg',
     'category': 'learning',
     'addDate': 1735689600000},
    {'id': 'regex101',
     'title': 'regex101',
     'url': 'https://regex101.com',
     'description': 'Online regular expression tester and debugger',
     'shortDesc': 'Regex tester',
     'icon': '/images/default.svg',
     'category': 'tools',
     'addDate': 1735689600000},
]


def search_sites(query, sites=None):
    """Case-insensitive substring search over title, descriptions and category."""
    if sites is None:
        sites = SITES
    if not query:
        return list(sites)
    needle = query.lower()
    return [
        site for site in sites
        if needle in (site.get('title') or '').lower()
        or needle in (site.get('description') or '').lower()
        or needle in (site.get('shortDesc') or '').lower()
        or needle in (site.get('category') or '').lower()
    ]


def escape_html(value):
    if not value:
        return ''
    return html.escape(str(value), quote=True)


def sites_to_html(sites_list):
    """Render sites as the navigation card grid."""
    if not sites_list:
        return '<p>No matching sites found</p>'
    cards = []
    for site in sites_list:
        title = escape_html(site.get('title'))
        desc = escape_html(site.get('shortDesc') or site.get('description'))
        url = escape_html(site.get('url'))
        icon = escape_html(site.get('icon') or '/images/default.svg')
        category = escape_html(site.get('category'))
        cards.append(
            f'<div class="site-card" data-category="{category}">'
            f'<a href="{url}" target="_blank" rel="noopener noreferrer">'
            f'<div class="site-icon"><img src="{icon}" alt="{title}" loading="lazy" '
            f'onerror="this.src=\'/images/default.svg\'"></div>'
            f'<div class="site-info"><h3>{title}</h3><p>{desc}</p></div>'
            f'</a></div>'
        )
    return f'<div class="sites-grid">{"".join(cards)}</div>'
