"""
Project Manifest — detect a project's runtime and generate its compose files.
"""

from __future__ import annotations

import enum
import re
import textwrap
from pathlib import Path

_NAME_RE = re.compile(r"[a-z0-9][a-z0-9_.-]*")


class ProjectType(str, enum.Enum):
    static = "static"
    nodejs = "nodejs"
    python = "python"
    php = "php"


def detect_project_type(path: str | Path) -> ProjectType:
    """Guess the runtime from marker files at the project root."""
    root = Path(path)
    if (root / "package.json").is_file():
        return ProjectType.nodejs
    if any((root / name).is_file() for name in ("requirements.txt", "pyproject.toml", "app.py")):
        return ProjectType.python
    if (root / "composer.json").is_file() or any(root.glob("*.php")):
        return ProjectType.php
    return ProjectType.static


def container_name_for(path: str | Path) -> str:
    """``<users>/<owner>/<project>`` -> ``<owner>-<project>``."""
    project_path = Path(path)
    name = f"{project_path.parent.name}-{project_path.name}".lower()
    if not _NAME_RE.fullmatch(name):
        raise ValueError(f"Invalid project name: {name!r}")
    return name


def _validate_port(port: int) -> int:
    if not isinstance(port, int) or not 1 <= port <= 65535:
        raise ValueError(f"Invalid port: {port!r}")
    return port


def generate_docker_compose(project_type: ProjectType, container_name: str, port: int) -> str:
    _validate_port(port)
    header = f"# {container_name}\n# Generated by dployr\n\n"
    if project_type == ProjectType.static:
        body = textwrap.dedent(f"""\
            services:
              web:
                image: nginx:alpine
                container_name: {container_name}
                restart: unless-stopped
                ports:
                  - "{port}:80"
                volumes:
                  - ./:/usr/share/nginx/html:ro
                  - ./nginx/default.conf:/etc/nginx/conf.d/default.conf:ro
                labels:
                  - "com.webserver.project={container_name}"
        """)
    elif project_type == ProjectType.nodejs:
        body = textwrap.dedent(f"""\
            services:
              app:
                image: node:20-alpine
                container_name: {container_name}
                restart: unless-stopped
                working_dir: /app
                command: sh -c "npm install && npm start"
                environment:
                  NODE_ENV: production
                  PORT: "3000"
                ports:
                  - "{port}:3000"
                volumes:
                  - ./:/app
                labels:
                  - "com.webserver.project={container_name}"
        """)
    elif project_type == ProjectType.python:
        body = textwrap.dedent(f"""\
            services:
              app:
                image: python:3.12-slim
                container_name: {container_name}
                restart: unless-stopped
                working_dir: /app
                command: sh -c "if [ -f requirements.txt ]; then pip install --no-cache-dir -r requirements.txt; fi && python app.py"
                environment:
                  PORT: "8000"
                ports:
                  - "{port}:8000"
                volumes:
                  - ./:/app
                labels:
                  - "com.webserver.project={container_name}"
        """)
    else:
        body = textwrap.dedent(f"""\
            services:
              web:
                image: php:8.3-apache
                container_name: {container_name}
                restart: unless-stopped
                ports:
                  - "{port}:80"
                volumes:
                  - ./:/var/www/html
                labels:
                  - "com.webserver.project={container_name}"
        """)
    return header + body


def generate_env(container_name: str, port: int) -> str:
    _validate_port(port)
    return f"PROJECT_NAME={container_name}\nEXPOSED_PORT={port}\n"


def generate_nginx_config() -> str:
    return textwrap.dedent("""\
        server {
            listen 80;
            server_name _;

            root /usr/share/nginx/html;
            index index.html index.htm;

            gzip on;
            gzip_vary on;
            gzip_min_length 1024;
            gzip_types text/plain text/css text/xml text/javascript application/x-javascript application/xml+rss application/json;

            add_header X-Frame-Options "SAMEORIGIN" always;
            add_header X-Content-Type-Options "nosniff" always;

            location / {
                try_files $uri $uri/ =404;
            }

            location ~ /\\. {
                deny all;
            }

            location ~* \\.(jpg|jpeg|png|gif|ico|css|js|svg|woff|woff2|ttf|eot)$ {
                expires 1y;
                add_header Cache-Control "public, immutable";
            }

            error_page 404 /404.html;
            error_page 500 502 503 504 /50x.html;
        }
    """)
