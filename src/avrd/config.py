from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Union

# Daemon settings, read once at startup
class SerialPort(BaseModel): device:str='/dev/ttyS1'; baudrate:int=9600
class Paths(BaseModel):
    timer_file:str='/etc/default/avr_evtd.yaml'; event_script:str='/etc/avr_evtd/EventScript'; mounts:str='/proc/mounts'
class LoggingSettings(BaseModel): enabled:bool=True; level:str='INFO'; file:Optional[str]=None; syslog:bool=False
class AppConfig(BaseModel):
    serial:SerialPort=Field(default_factory=SerialPort); paths:Paths=Field(default_factory=Paths)
    logging:LoggingSettings=Field(default_factory=LoggingSettings); em_mode:bool=False

# Timer file, re-read whenever it changes.
# Unquoted H:MM values arrive from YAML as sexagesimal ints, i.e. minutes of day.
TimeValue = Union[str, int]

class DayMacro(BaseModel):
    days:Union[str, List[str]]; power_off:Optional[TimeValue]=None; power_on:Optional[TimeValue]=None

class TimerFile(BaseModel):
    timer:bool=False; shutdown:Optional[TimeValue]=None; poweron:Optional[TimeValue]=None
    disk_check:int=90; refresh:int=40; hold:int=3; disk_nag:bool=False; fan_stop:Union[bool, int]=30
    root:Optional[str]=None; work:Optional[str]=None
    schedule:List[DayMacro]=Field(default_factory=list)

    @field_validator('disk_check')
    @classmethod
    def _pct(cls, v: int) -> int: return 100 if v > 100 else (-1 if v < 0 else v)

    @field_validator('refresh')
    @classmethod
    def _refresh(cls, v: int) -> int: return min(300, max(10, v))

    @field_validator('hold')
    @classmethod
    def _hold(cls, v: int) -> int: return min(10, max(2, v))

    @field_validator('fan_stop')
    @classmethod
    def _fan(cls, v):
        if v is False: return 0
        if v is True: return 30
        return min(60, max(1, v))

    @field_validator('root', 'work')
    @classmethod
    def _partition(cls, v):
        if v is not None and (len(v) > 5 or '/' in v):
            raise ValueError(f"bad partition name: {v!r}")
        return v
