"""Game mode selection: the choices of the start screen and the parameters they produce."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum

from .textbox import TextBox

BOARD_CONFIG = "GROUPED2"

_IP_LABEL = "Dirección IP / Nombre de dominio"
_ROOM_LABEL = "Nombre para la sala"
_AI_J1 = "ID de la IA (J1)"
_AI_J2 = "ID de la IA (J2)"
_NINJA_J1 = "ID del ninja (J1)"
_NINJA_J2 = "ID del ninja (J2)"
_AI_SERVER = "ID de la IA (Servidor)"
_MY_AI = "ID de mi IA"
_NONE = "-"


class GameMode(Enum):
    """The mutually exclusive game modes offered by the selector."""

    TWO_PLAYER = "two_player"
    VS_HEURISTIC = "vs_heuristic"
    NINJA1 = "ninja1"
    NINJA2 = "ninja2"
    NINJA3 = "ninja3"
    HEURISTIC_VS_HEURISTIC = "heuristic_vs_heuristic"
    HEURISTIC_VS_NINJA = "heuristic_vs_ninja"
    NINJA_VS_HEURISTIC = "ninja_vs_heuristic"
    ONLINE_CLIENT = "online_client"
    ONLINE_SERVER = "online_server"
    RANDOM_PAIRING = "random_pairing"
    PRIVATE_ROOM = "private_room"


_NINJA_NUMBERS = {GameMode.NINJA1: 1, GameMode.NINJA2: 2, GameMode.NINJA3: 3}


@dataclass
class GameParameters:
    """Everything needed to launch the chosen game."""

    type_j1: str = "GUI"
    type_j2: str = "GUI"
    id_j1: int = 0
    id_j2: int = 0
    name_j1: str = "J1"
    name_j2: str = "J2"
    gui: bool = True
    server: bool = False
    random: bool = False
    private_room: bool = False
    ip: str = ""
    port: int = -1
    config: str = BOARD_CONFIG
    ninja_server: bool = False
    playground: bool = False


class GameSelector:
    """State of the start screen: selected mode, player seat, GUI flag and input fields."""

    def __init__(self) -> None:
        self.parameters = GameParameters()
        self.ai1_id = TextBox("0", max_size=3, allow_typing=False, only_numeric=True)
        self.ai2_id = TextBox("0", max_size=3, allow_typing=False, only_numeric=True)
        self.ip_box = TextBox("", max_size=20, allow_typing=True, only_numeric=False)
        self.port_box = TextBox("", max_size=8, allow_typing=True, only_numeric=True)
        self.p1_name = TextBox("J1", max_size=10, allow_typing=True, only_numeric=False)
        self.p2_name = TextBox("J2", max_size=10, allow_typing=True, only_numeric=False)

        self._labels = {
            "ai1_id": _AI_J1,
            "ai2_id": _AI_J2,
            "ip": _IP_LABEL,
            "port": "Puerto",
            "p1_name": "Nombre J1",
            "p2_name": "Nombre J2",
        }
        self._player_one = True
        self._player_id_enabled = True
        self._gui_enabled = True
        self._mode = GameMode.TWO_PLAYER
        self.finished = False
        self.select(GameMode.TWO_PLAYER)

    # ----------------------------------------------------------------- state

    @property
    def mode(self) -> GameMode:
        return self._mode

    @property
    def player_one(self) -> bool:
        """Whether the local player takes the first seat."""
        return self._player_one

    @property
    def player_id_enabled(self) -> bool:
        return self._player_id_enabled

    @property
    def gui_enabled(self) -> bool:
        return self._gui_enabled

    def labels(self) -> dict[str, str]:
        """Captions currently shown above each input field."""
        return dict(self._labels)

    # ------------------------------------------------------------ internals

    def _set_gui(self, selected: bool) -> None:
        self.parameters.gui = selected

    def _force_gui(self) -> None:
        self._set_gui(True)
        self._gui_enabled = False

    def _set_player_one(self, selected: bool) -> None:
        if selected != self._player_one:
            params = self.parameters
            params.type_j1, params.type_j2 = params.type_j2, params.type_j1
            first, second = self.ai1_id, self.ai2_id
            first_enabled = first.enabled
            first.set_enabled(second.enabled)
            second.set_enabled(first_enabled)
            first.text, second.text = second.text, first.text
            if self._mode in _NINJA_NUMBERS:
                if selected:
                    self._labels["ai1_id"], self._labels["ai2_id"] = _AI_J1, _NINJA_J2
                else:
                    self._labels["ai1_id"], self._labels["ai2_id"] = _NINJA_J1, _AI_J2
        self._player_one = selected

    def _ai_fields(self, first: bool, second: bool, label1: str, label2: str) -> None:
        self.ai1_id.set_enabled(first)
        self.ai2_id.set_enabled(second)
        self._labels["ai1_id"] = label1
        self._labels["ai2_id"] = label2

    def _network_fields(self, ip: bool, port: bool, ip_label: str = _IP_LABEL) -> None:
        self.ip_box.set_enabled(ip)
        self._labels["ip"] = ip_label
        self.port_box.set_enabled(port)

    def _flags(self, server: bool = False, random: bool = False, private: bool = False) -> None:
        self.parameters.server = server
        self.parameters.random = random
        self.parameters.private_room = private

    # -------------------------------------------------------------- actions

    def select(self, mode: GameMode) -> None:
        """Choose a game mode and set the fields and parameters it implies."""
        mode = GameMode(mode)
        params = self.parameters

        if mode is GameMode.TWO_PLAYER:
            self._flags()
            params.type_j1 = params.type_j2 = "GUI"
            self._force_gui()
            self._player_id_enabled = False
            self._ai_fields(True, True, _AI_J1, _AI_J2)
            self._network_fields(False, False)

        elif mode is GameMode.VS_HEURISTIC:
            self._flags()
            self._player_id_enabled = True
            self._force_gui()
            if self._player_one:
                params.type_j1, params.type_j2 = "GUI", "AI"
            else:
                params.type_j1, params.type_j2 = "AI", "GUI"
            self._ai_fields(True, True, _AI_J1, _AI_J2)
            self._network_fields(False, False)

        elif mode in _NINJA_NUMBERS:
            number = str(_NINJA_NUMBERS[mode])
            self._flags()
            self._player_id_enabled = True
            self._force_gui()
            if self._player_one:
                params.type_j1, params.type_j2 = "GUI", "Ninja"
                self.ai2_id.text = number
                self._ai_fields(True, False, _AI_J1, _NINJA_J2)
            else:
                params.type_j1, params.type_j2 = "Ninja", "GUI"
                self.ai1_id.text = number
                self._ai_fields(False, True, _NINJA_J1, _AI_J2)
            self._network_fields(False, False)

        elif mode is GameMode.HEURISTIC_VS_HEURISTIC:
            self._flags()
            self._player_id_enabled = False
            self._gui_enabled = True
            params.type_j1, params.type_j2 = "AI", "AI"
            self._ai_fields(True, True, _AI_J1, _AI_J2)
            self._network_fields(False, False)

        elif mode is GameMode.HEURISTIC_VS_NINJA:
            self._flags()
            self._player_id_enabled = False
            self._set_player_one(True)
            self._gui_enabled = True
            params.type_j1, params.type_j2 = "AI", "Ninja"
            self._ai_fields(True, True, _AI_J1, _NINJA_J2)
            self._network_fields(False, False)

        elif mode is GameMode.NINJA_VS_HEURISTIC:
            self._flags()
            self._player_id_enabled = False
            self._set_player_one(False)
            self._gui_enabled = True
            params.type_j1, params.type_j2 = "Ninja", "AI"
            self._ai_fields(True, True, _NINJA_J1, _AI_J2)
            self._network_fields(False, False)

        elif mode is GameMode.ONLINE_CLIENT:
            self._flags()
            self._player_id_enabled = True
            self._force_gui()
            if self._player_one:
                params.type_j1, params.type_j2 = "GUI", "Remote"
                self._ai_fields(True, False, _AI_J1, _AI_J2)
            else:
                params.type_j1, params.type_j2 = "Remote", "GUI"
                self._ai_fields(False, True, _AI_J1, _AI_J2)
            self._network_fields(True, True)

        elif mode is GameMode.ONLINE_SERVER:
            self._set_player_one(True)
            self._player_id_enabled = False
            self._force_gui()
            self._flags(server=True)
            self._ai_fields(True, False, _AI_SERVER, _NONE)
            self._network_fields(False, True)

        elif mode is GameMode.RANDOM_PAIRING:
            self._flags(random=True)
            self._player_id_enabled = False
            self._force_gui()
            self._ai_fields(True, False, _MY_AI, _NONE)
            self._network_fields(False, False)

        else:  # GameMode.PRIVATE_ROOM
            self._flags(private=True)
            self._player_id_enabled = False
            self._force_gui()
            self._ai_fields(True, False, _MY_AI, _NONE)
            self._network_fields(True, False, _ROOM_LABEL)

        self._mode = mode

    def toggle_player_id(self) -> bool:
        """Swap the local player's seat; return False if the choice is locked."""
        if not self._player_id_enabled:
            return False
        self._set_player_one(not self._player_one)
        return True

    def toggle_gui(self) -> bool:
        """Switch the graphical interface on or off; return False if the choice is locked."""
        if not self._gui_enabled:
            return False
        self._set_gui(not self.parameters.gui)
        return True

    def start(self, playground: bool = False) -> GameParameters:
        """Read the input fields and return the parameters of the game to launch.

        Raises ValueError if an AI identifier or the port is not a number.
        """
        params = self.parameters
        params.id_j1 = int(self.ai1_id.text)
        params.id_j2 = int(self.ai2_id.text)
        params.ip = self.ip_box.text
        params.port = int(self.port_box.text) if self.port_box.text else -1
        params.config = BOARD_CONFIG
        params.name_j1 = self.p1_name.text
        params.name_j2 = self.p2_name.text
        params.ninja_server = False
        if playground:
            params.playground = True
        self.finished = True
        return dataclasses.replace(params)