"""Caddyfile formatting and adaptation to Caddy's JSON config.

The adapter covers the directives the generated Caddyfiles use (reverse
proxies, path handling, simple responses, TLS modes). Anything else is
reported as a warning and left out of the JSON.
"""
# pylint: disable=too-many-branches

from dataclasses import dataclass, field

from apps2compose.core.errors import CaddyfileError

# Order in which Caddy evaluates handler directives inside a site
DIRECTIVE_ORDER = (
    "root", "header", "encode", "uri", "redir", "handle_path", "handle",
    "respond", "reverse_proxy", "file_server",
)


@dataclass
class Token:
    text: str
    line: int
    quoted: bool = False


@dataclass
class Directive:
    name: str
    args: list[str]
    line: int
    block: list["Directive"] | None = None


@dataclass
class ServerBlock:
    """A site block (or the global options block when ``keys`` is empty)."""
    keys: list[str]
    directives: list[Directive] = field(default_factory=list)


def _tokenize(text: str) -> list[Token]:
    """Split Caddyfile text into tokens; comments dropped, quotes honoured."""
    tokens = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        i = 0
        while i < len(line):
            ch = line[i]
            if ch.isspace():
                i += 1
                continue
            if ch == "#":
                break
            if ch in ('"', '`'):
                end = i + 1
                buf = []
                while end < len(line) and line[end] != ch:
                    if ch == '"' and line[end] == "\\" and end + 1 < len(line):
                        end += 1
                    buf.append(line[end])
                    end += 1
                tokens.append(Token("".join(buf), lineno, quoted=True))
                i = end + 1
                continue
            end = i
            while end < len(line) and not line[end].isspace():
                end += 1
            tokens.append(Token(line[i:end], lineno))
            i = end
    return tokens


def _is_brace(token: Token, brace: str) -> bool:
    return not token.quoted and token.text == brace


def _split_lines(tokens: list[Token]) -> list[list[Token]]:
    lines: list[list[Token]] = []
    for token in tokens:
        if lines and lines[-1][0].line == token.line:
            lines[-1].append(token)
        else:
            lines.append([token])
    return lines


def _parse_directives(tokens: list[Token]) -> list[Directive]:
    """Build the directive tree from line-grouped tokens."""
    root: list[Directive] = []
    stack = [root]
    for line in _split_lines(tokens):
        while line and _is_brace(line[0], "}"):
            if len(stack) == 1:
                raise CaddyfileError(f"line {line[0].line}: unexpected '}}'")
            stack.pop()
            line = line[1:]
        if not line:
            continue
        opens = _is_brace(line[-1], "{")
        words = line[:-1] if opens else line
        if any(_is_brace(t, "{") or _is_brace(t, "}") for t in words):
            raise CaddyfileError(f"line {line[0].line}: braces must end a line")
        directive = Directive(
            name=words[0].text if words else "",
            args=[t.text for t in words[1:]],
            line=line[0].line,
            block=[] if opens else None,
        )
        stack[-1].append(directive)
        if opens:
            stack.append(directive.block)
    if len(stack) != 1:
        raise CaddyfileError("unexpected end of file: unclosed '{'")
    return root


def parse_server_blocks(text: str) -> list[ServerBlock]:
    """Parse a Caddyfile into server blocks."""
    top = _parse_directives(_tokenize(text))
    blocks: list[ServerBlock] = []
    # Single site without braces: every top-level line belongs to it
    if top and top[0].block is None and all(d.block is None for d in top):
        keys = " ".join([top[0].name, *top[0].args])
        return [ServerBlock(keys=_split_keys(keys), directives=top[1:])]
    for i, directive in enumerate(top):
        if directive.block is None:
            raise CaddyfileError(
                f"line {directive.line}: '{directive.name}' outside of a site block")
        if not directive.name and i == 0:
            blocks.append(ServerBlock(keys=[], directives=directive.block))
            continue
        keys = " ".join([directive.name, *directive.args])
        blocks.append(ServerBlock(keys=_split_keys(keys), directives=directive.block))
    return blocks


def _split_keys(keys: str) -> list[str]:
    return [k for k in keys.replace(",", " ").split() if k]


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def format_caddyfile(text: str) -> str:
    """Re-indent a Caddyfile with tabs and normalise blank lines."""
    out: list[str] = []
    depth = 0
    pending_blank = False
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            pending_blank = bool(out)
            continue
        if line.endswith("{") and len(line) > 1 and not line[-2].isspace() \
                and not line.startswith("#"):
            line = line[:-1].rstrip() + " {"
        words = _tokenize(line)
        if words and _is_brace(words[0], "}"):
            depth = max(depth - 1, 0)
            words = words[1:]
            pending_blank = False
        if pending_blank and not out[-1].endswith("{"):
            out.append("")
        pending_blank = False
        out.append("\t" * depth + line)
        depth += sum(1 for w in words if _is_brace(w, "{"))
        depth -= sum(1 for w in words if _is_brace(w, "}"))
        depth = max(depth, 0)
    return "\n".join(out) + "\n" if out else ""


# ---------------------------------------------------------------------------
# JSON adaptation
# ---------------------------------------------------------------------------

def _parse_address(address: str) -> tuple[str, str, int]:
    """Split a site address into (scheme, host, port)."""
    scheme = ""
    if "://" in address:
        scheme, address = address.split("://", 1)
    address = address.split("/", 1)[0]
    host, port = address, None
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        if rest.startswith(":"):
            port = rest[1:]
    elif address.count(":") == 1:
        host, port = address.split(":")
    if port:
        try:
            port_num = int(port)
        except ValueError:
            raise CaddyfileError(f"invalid port in site address '{address}'") from None
    else:
        port_num = 80 if scheme == "http" else 443
    return scheme, host, port_num


def _dial_address(upstream: str) -> tuple[str, bool]:
    """Turn a reverse_proxy upstream into a dial address; True if it is HTTPS."""
    tls = upstream.startswith("https://")
    if "://" in upstream:
        upstream = upstream.split("://", 1)[1]
    if upstream.count(":") == 0 or (upstream.startswith("[") and upstream.endswith("]")):
        upstream = f"{upstream}:{443 if tls else 80}"
    return upstream, tls


def _path_matcher(args: list[str], bare: bool = False) -> tuple[list[dict] | None, list[str]]:
    """Strip a leading path matcher (/path or *) off directive arguments.

    Unless *bare*, a lone "/..." argument is the directive's value, not a matcher
    (``redir /new``).
    """
    if args and args[0] == "*":
        return None, args[1:]
    if args and args[0].startswith("/") and (bare or len(args) > 1):
        return [{"path": [args[0]]}], args[1:]
    return None, args


def _adapt_transport(directive: Directive, warnings: list[str]) -> dict:
    if not directive.args or directive.args[0] != "http":
        warnings.append(f"Caddyfile line {directive.line}: unsupported transport skipped")
        return {}
    transport: dict = {"protocol": "http"}
    for sub in directive.block or []:
        tls = transport.setdefault("tls", {})
        if sub.name == "tls":
            continue
        if sub.name == "tls_insecure_skip_verify":
            tls["insecure_skip_verify"] = True
        elif sub.name == "tls_server_name" and sub.args:
            tls["server_name"] = sub.args[0]
        elif sub.name == "tls_trust_pool" and sub.args[:1] == ["file"]:
            tls["ca"] = {"provider": "file", "pem_files": sub.args[1:]}
        else:
            warnings.append(
                f"Caddyfile line {sub.line}: unsupported transport option '{sub.name}' skipped")
    return transport


def _adapt_reverse_proxy(directive: Directive, args: list[str],
                         warnings: list[str]) -> dict:
    handler: dict = {"handler": "reverse_proxy", "upstreams": []}
    upstreams = list(args)
    use_tls = False
    for sub in directive.block or []:
        if sub.name == "to":
            upstreams.extend(sub.args)
        elif sub.name == "transport":
            handler["transport"] = _adapt_transport(sub, warnings)
        elif sub.name == "header_up" and len(sub.args) >= 2:
            headers = handler.setdefault("headers", {}).setdefault("request", {})
            headers.setdefault("set", {})[sub.args[0]] = [" ".join(sub.args[1:])]
        else:
            warnings.append(
                f"Caddyfile line {sub.line}: unsupported reverse_proxy option '{sub.name}' skipped")
    for upstream in upstreams:
        dial, tls = _dial_address(upstream)
        use_tls = use_tls or tls
        handler["upstreams"].append({"dial": dial})
    if use_tls:
        transport = handler.setdefault("transport", {"protocol": "http"})
        transport.setdefault("tls", {})
    if not handler["upstreams"]:
        raise CaddyfileError(f"line {directive.line}: reverse_proxy without upstream")
    return handler


def _status_code(value: str, line: int) -> int:
    try:
        return int(value)
    except ValueError:
        raise CaddyfileError(f"line {line}: invalid status code '{value}'") from None


def _adapt_directive(directive: Directive, ctx: dict, warnings: list[str]) -> dict | None:
    """Adapt one site directive to a route dict (None when it produces no route)."""
    name = directive.name
    if name in ("handle", "handle_path"):
        match, _ = _path_matcher(directive.args, bare=True)
        routes = _adapt_routes(directive.block or [], ctx, warnings)
        if name == "handle_path":
            if not match:
                raise CaddyfileError(f"line {directive.line}: handle_path needs a path")
            prefix = match[0]["path"][0].rstrip("*").rstrip("/")
            routes.insert(0, {"handle": [{"handler": "rewrite",
                                          "strip_path_prefix": prefix}]})
        route = {"group": "handle",
                 "handle": [{"handler": "subroute", "routes": routes}]}
        if match:
            route["match"] = match
        return route

    if name == "tls":
        if directive.args == ["internal"]:
            ctx["tls_internal"] = True
        elif len(directive.args) == 1 and "@" in directive.args[0]:
            ctx["tls_email"] = directive.args[0]
        else:
            warnings.append(f"Caddyfile line {directive.line}: unsupported tls options skipped")
        return None

    match, args = _path_matcher(directive.args)
    if name == "reverse_proxy":
        handler = _adapt_reverse_proxy(directive, args, warnings)
    elif name == "uri" and len(args) == 2 and args[0] in ("strip_prefix", "strip_suffix"):
        handler = {"handler": "rewrite", args[0].replace("strip_", "strip_path_"): args[1]}
    elif name == "respond":
        handler = {"handler": "static_response"}
        if len(args) == 1 and args[0].isdigit():
            handler["status_code"] = int(args[0])
        elif args:
            handler["body"] = args[0]
            if len(args) > 1:
                handler["status_code"] = _status_code(args[1], directive.line)
    elif name == "redir" and args:
        code = {"permanent": 301, "temporary": 302}.get(args[1] if len(args) > 1 else "temporary")
        if code is None:
            code = _status_code(args[1], directive.line)
        handler = {"handler": "static_response", "status_code": code,
                   "headers": {"Location": [args[0]]}}
    elif name == "encode" and args:
        handler = {"handler": "encode", "encodings": {e: {} for e in args}, "prefer": list(args)}
    elif name == "header" and args:
        header_name = args[0]
        if header_name.startswith("-"):
            handler = {"handler": "headers", "response": {"delete": [header_name[1:]]}}
        else:
            handler = {"handler": "headers",
                       "response": {"set": {header_name: [" ".join(args[1:])]}}}
    elif name == "root" and args:
        handler = {"handler": "vars", "root": args[0]}
    elif name == "file_server":
        handler = {"handler": "file_server"}
    else:
        warnings.append(f"Caddyfile line {directive.line}: unsupported directive '{name}' skipped")
        return None
    route: dict = {"handle": [handler]}
    if match:
        route["match"] = match
    if handler["handler"] in ("reverse_proxy", "static_response", "file_server"):
        route["terminal"] = True
    return route


def _adapt_routes(directives: list[Directive], ctx: dict, warnings: list[str]) -> list[dict]:
    def order(d: Directive) -> int:
        return DIRECTIVE_ORDER.index(d.name) if d.name in DIRECTIVE_ORDER else len(DIRECTIVE_ORDER)

    routes = []
    for directive in sorted(directives, key=order):
        route = _adapt_directive(directive, ctx, warnings)
        if route is not None:
            routes.append(route)
    return routes


def _adapt_global_options(block: ServerBlock, config: dict, warnings: list[str]) -> None:
    for directive in block.directives:
        if directive.name == "email" and directive.args:
            config["_email"] = directive.args[0]
        elif directive.name == "admin" and directive.args:
            if directive.args[0] == "off":
                config["admin"] = {"disabled": True}
            else:
                config["admin"] = {"listen": directive.args[0]}
        elif directive.name == "debug":
            config["logging"] = {"logs": {"default": {"level": "DEBUG"}}}
        else:
            warnings.append(
                f"Caddyfile line {directive.line}: unsupported global option "
                f"'{directive.name}' skipped")


def adapt_caddyfile(text: str, warnings: list[str] | None = None) -> dict:
    """Adapt Caddyfile text to a Caddy JSON config (as accepted by POST /load)."""
    warnings = warnings if warnings is not None else []
    config: dict = {}
    servers: dict[str, dict] = {}
    policies: list[dict] = []
    for block in parse_server_blocks(text):
        if not block.keys:
            _adapt_global_options(block, config, warnings)
            continue
        ctx: dict = {}
        routes = _adapt_routes(block.directives, ctx, warnings)
        hosts_by_port: dict[int, list[str]] = {}
        for key in block.keys:
            _scheme, host, port = _parse_address(key)
            hosts_by_port.setdefault(port, [])
            if host and host != "*":
                hosts_by_port[port].append(host)
        for port, hosts in hosts_by_port.items():
            listen = f":{port}"
            server = servers.get(listen)
            if server is None:
                server = {"listen": [listen], "routes": []}
                servers[listen] = server
            route: dict = {"handle": [{"handler": "subroute", "routes": routes}],
                           "terminal": True}
            if hosts:
                route["match"] = [{"host": hosts}]
            server["routes"].append(route)
        subjects = [h for hosts in hosts_by_port.values() for h in hosts]
        if ctx.get("tls_internal"):
            policies.append({"subjects": subjects, "issuers": [{"module": "internal"}]})
        elif ctx.get("tls_email"):
            policies.append({"subjects": subjects,
                             "issuers": [{"module": "acme", "email": ctx["tls_email"]}]})

    email = config.pop("_email", None)
    if email:
        policies.append({"issuers": [{"module": "acme", "email": email}]})
    config["apps"] = {"http": {"servers": {
        f"srv{i}": server for i, server in enumerate(servers.values())}}}
    if policies:
        config["apps"]["tls"] = {"automation": {"policies": policies}}
    return config


def parse_caddyfile(text: str, warnings: list[str] | None = None) -> dict:
    """Parse and adapt a rendered Caddyfile; raises CaddyfileError."""
    return adapt_caddyfile(text, warnings)
