"""A small project-management app rendered into a FakeSurface.

Screens: login form, optional one-time-code form, home, project listing
(with create template, create dialog, row menu, delete confirmation) and the
project detail screen with an optional page editor. Faults are switched on
with constructor flags.
"""

from fakes import E

BASE = "https://app.example.test"
VALID_TOKEN = "sid-valid"


class FakeProjectApp:
    def __init__(self, surface, logged_in=True, reject_first_submit=False, duplicate_on_create=False,
                 delete_noop=False, detail_title="Project settings", detail_text="", editor=False,
                 accept_drop=True, credentials=None, otp_codes=None, existing=()):
        self.surface = surface
        self.logged_in = logged_in
        self.reject_first_submit = reject_first_submit
        self.duplicate_on_create = duplicate_on_create
        self.delete_noop = delete_noop
        self.detail_title = detail_title
        self.detail_text = detail_text
        self.editor = editor
        self.accept_drop = accept_drop
        # (username, password) the login form accepts
        self.credentials = credentials
        # codes the one-time-code form accepts, in order; None means no second factor
        self.otp_codes = otp_codes
        self.submitted_codes = []
        self.projects = list(existing)
        self.screen = "home"
        self.awaiting_otp = False
        self.template_open = False
        self.dialog_open = False
        self.rejected = False
        self.menu_for = None
        self.confirm_for = None
        self.current = None
        self.pages = 0
        self.canvas_items = 0
        self.delete_requests = []
        self.dialog = None
        self.dialog_input = None
        self.canvas = None
        self.login_fields = {}
        surface.on_navigate = self._on_navigate
        surface.on_drop = self._on_drop
        surface.on_apply_state = self._on_apply_state
        surface.location = BASE + "/"
        self.render()

    # navigation

    def go(self, path):
        self.surface.location = BASE + path
        self._route(self.surface.location)
        self.render()

    def _route(self, url):
        self.menu_for = None
        self.confirm_for = None
        self.template_open = False
        self.dialog_open = False
        if "/project?s=" in url:
            self.screen = "detail"
        elif url.rstrip("/").endswith("/projects"):
            self.screen = "listing"
        else:
            self.screen = "home"

    def _on_navigate(self, url):
        self._route(url)
        self.render()

    def login(self):
        self.logged_in = True
        self.awaiting_otp = False
        self.surface.state = {"cookies": [{"name": "sid", "value": VALID_TOKEN}], "origins": []}
        self.render()

    def _on_apply_state(self, state):
        cookies = state.get("cookies") or []
        if any(c.get("value") == VALID_TOKEN for c in cookies):
            self.logged_in = True
            self.surface.state = dict(state)

    # rendering

    def render(self):
        body = E("body")
        if not self.logged_in:
            body.append(self._otp_form() if self.awaiting_otp else self._login_form())
            self.surface.set_body(body)
            return
        nav = body.append(E("ul", css={".px-nav-content"}))
        item = nav.append(E("li", css={".px-nav-content .px-nav-item"}))
        item.append(E("a", "プロジェクト", css={"a"}, role="link", on_click=lambda _: self.go("/projects")))
        main = body.append(E("main", css={".px-content"}))
        if self.screen == "listing":
            self._render_listing(body, main)
        elif self.screen == "detail":
            self._render_detail(main)
        else:
            main.append(E("p", "Welcome"))
        self.surface.set_body(body)

    def _login_form(self):
        self.login_fields = {
            "username": E("input", css={"input[type='email']"}, label="Email"),
            "password": E("input", css={"input[type='password']"}, label="Password"),
        }
        return E("form", "",
                 self.login_fields["username"], self.login_fields["password"],
                 E("button", "Log in", role="button", on_click=self._submit_login))

    def _otp_form(self):
        self.login_fields = {"otp": E("input", css={"#otp"}, label="Authentication code")}
        return E("form", "", self.login_fields["otp"],
                 E("button", "Verify", role="button", on_click=self._submit_otp))

    def _render_listing(self, body, main):
        main.append(E("button", "新しいプロジェクトを作成", css={"button.btn-info.pull-right"}, role="button",
                      on_click=self._open_templates))
        table = main.append(E("table"))
        for name in self.projects:
            table.append(E("tr", "",
                           E("td", name),
                           E("button", "", css={"button[aria-label='more']"}, role="button",
                             attrs={"aria-label": "more"}, on_click=lambda _, n=name: self._open_menu(n))))
        if self.template_open:
            body.append(E("div", "", E("div", "Blank project", css={"div.panel-body .font-size-14.font-weight-bold"},
                                       on_click=self._pick_template), css={"div.panel-body"}))
        if self.dialog_open:
            self.dialog_input = E("input", css={"div > input.form-control"})
            self.dialog = body.append(E("div", "", E("div", "", self.dialog_input),
                                        E("button", "完了", css={"button.btn-primary"}, role="button",
                                          on_click=self._submit_create),
                                        css={".modal-content"}, role="dialog"))
        if self.menu_for is not None:
            name = self.menu_for
            body.append(E("ul", "",
                          E("li", "", E("a", "編集", css={"li.item a"}, on_click=lambda _: self._edit(name)),
                            css={"li.item"}),
                          E("li", "", E("a", "削除", css={"li.item a"}, on_click=lambda _: self._ask_delete(name)),
                            css={"li.item"}),
                          css={"ul.dropdown-menu"}))
        if self.confirm_for is not None:
            body.append(E("div", "", E("button", "削除", css={".modal-content button.btn-danger"}, role="button",
                                       on_click=self._confirm_delete),
                          css={".modal-content"}, role="dialog"))

    def _render_detail(self, main):
        main.append(E("h1", self.detail_title))
        if self.detail_text:
            main.append(E("p", self.detail_text))
        if not self.editor:
            return
        main.append(E("button", "ページを追加", role="button", attrs={"data-testid": "add-page"},
                      on_click=self._add_page))
        main.append(E("div", "", E("div", "Text", css={".component-palette [draggable=true]"},
                                   box={"x": 10, "y": 100, "width": 100, "height": 30}),
                      css={".component-palette"}))
        if self.pages:
            self.canvas = main.append(E("div", "", *[E("div", "Text block") for _ in range(self.canvas_items)],
                                        attrs={"data-testid": "page-canvas"},
                                        box={"x": 400, "y": 100, "width": 600, "height": 400}))

    # handlers

    def _submit_login(self, _):
        user = self.login_fields["username"].value
        password = self.login_fields["password"].value
        if self.credentials is None or (user, password) != self.credentials:
            return
        if self.otp_codes is not None:
            self.awaiting_otp = True
            self.render()
            return
        self.login()

    def _submit_otp(self, _):
        code = self.login_fields["otp"].value
        self.submitted_codes.append(code)
        if code in self.otp_codes:
            self.login()

    def _open_templates(self, _):
        self.template_open = True
        self.render()

    def _pick_template(self, _):
        self.template_open = False
        self.dialog_open = True
        self.render()

    def _submit_create(self, _):
        for el in list(self.dialog.children):
            if ".invalid-feedback" in el.css:
                el.remove()
        name = self.dialog_input.value.strip()
        if self.reject_first_submit and not self.rejected:
            # the framework dropped the typed value
            self.rejected = True
            self.dialog_input.value = ""
            self.dialog.append(E("span", "入力してください", css={".invalid-feedback"}))
            return
        if not name:
            self.dialog.append(E("span", "入力してください", css={".invalid-feedback"}))
            return
        self.projects.append(name)
        if self.duplicate_on_create:
            self.projects.append(name)
        self.dialog_open = False
        self.render()

    def _open_menu(self, name):
        self.menu_for = name
        self.render()

    def _edit(self, name):
        self.current = name
        self.go(f"/project?s={self.projects.index(name) + 1}")

    def _ask_delete(self, name):
        self.menu_for = None
        self.confirm_for = name
        self.render()

    def _confirm_delete(self, _):
        name = self.confirm_for
        self.delete_requests.append(name)
        self.confirm_for = None
        if not self.delete_noop and name in self.projects:
            self.projects.remove(name)
        self.render()

    def _add_page(self, _):
        self.pages += 1
        self.render()

    def _on_drop(self, x, y):
        if self.screen != "detail" or self.canvas is None or not self.accept_drop:
            return
        box = self.canvas.box
        if box["x"] <= x <= box["x"] + box["width"] and box["y"] <= y <= box["y"] + box["height"]:
            self.canvas_items += 1
            self.canvas.append(E("div", "Text block"))
