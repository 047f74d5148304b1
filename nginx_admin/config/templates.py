"""Default content for newly created server files."""
from jinja2 import Environment, StrictUndefined

DEFAULT_SERVER_TEMPLATE = """\
server {
    listen {{ listen }};
    server_name {{ server_name }};

    location / {
        root {{ root }};
        index index.html index.htm;
    }
}
"""

_env = Environment(undefined=StrictUndefined, keep_trailing_newline=True, autoescape=False)


def render_default_server(
    listen: int = 80,
    server_name: str = "localhost",
    root: str = "/usr/share/nginx/html"
) -> str:
    """Render the server block used when a server file is created empty."""
    template = _env.from_string(DEFAULT_SERVER_TEMPLATE)
    return template.render(listen=listen, server_name=server_name, root=root)
