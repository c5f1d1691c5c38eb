import os
import platform

from configobj import ConfigObj, ConfigObjError, Section, flatten_errors
from configobj.validate import Validator

# The default extension for configuration files
config_extension = '.cfg'


def config_flavor(name, flavor=None):
    configname = name if not flavor else name + '.' + flavor
    return configname


def config_filename(name, directory=None):
    """
    Determines the location of a config file relative to this module.
    """
    config_file = os.path.join(directory, name + config_extension)
    return config_file


def load_config_file_base(file, must_exist=True):
    """
    Loads a configuration file
    :param file:        The configuration file to load
    :param must_exist:  when True, the file must exist or an exception is thrown.
    :return: The ConfigObj instance for the file.
    """
    try:
        return ConfigObj(file, interpolation='Template', file_error=must_exist) \
            if must_exist or os.path.exists(file) else ConfigObj()
    except ConfigObjError as e:
        raise type(e)(str(e) + ' at ' + file)


def config_flavor_file(name, directory, subpart=None)->ConfigObj:
    """
    Loads a specialization of a config file. The configuration file is expected to be named
    after the base, followed by a period and then the specialization, if the specialization is given,
    otherwise just the base name.
    :param name:    The name of the base configuration
    :param subpart: The name of the specialization.
    :return: The ConfigObj for the configuration file.
    """
    configname = config_flavor(name, subpart)
    file = config_filename(configname, directory)
    config = load_config_file_base(file, False)
    return config


def load_config_spec(name, directory)->ConfigObj:
    """
    Loads the schema for a configuration. Schema values such as `integer(min=0, default=3)` contain commas,
    so the file is parsed as a configspec rather than as a list-valued config.
    """
    file = config_filename(config_flavor(name, 'schema'), directory)
    if not os.path.exists(file):
        return ConfigObj()
    try:
        return ConfigObj(file, list_values=False, _inspec=True)
    except ConfigObjError as e:
        raise type(e)(str(e) + ' at ' + file)


def map_os_name(name):
    """
    >>> map_os_name('Windows')
    'windows'
    >>> map_os_name("Darwin")
    'osx'
    """
    name = name.lower()
    if name == 'darwin':
        name = 'osx'
    return name


def os_name():
    return map_os_name(platform.system())


def describe_errors(config, result):
    """
    Lists the keys that failed validation as 'section/key' strings.
    """
    return ['/'.join(section_list + ([key] if key is not None else []))
            for section_list, key, _ in flatten_errors(config, result)]


def load_config(name, directory):
    """
        Loads all the configuration files that relate to the given name.
        Configurations are loaded in this order:
        - the default specialization
        - the platform specialization
        - the user override
        - the base configuration
        The configurations are flattened into a single configuration, and then validated
        against a configuration specialization "schema".
    :directory: the location of the configuration file
    :return:
    """
    local_config = config_flavor_file(name, directory)
    default_config = config_flavor_file(name, directory, 'default')
    platform_config = config_flavor_file(name, directory, os_name())
    user_config = load_config_file_base(os.path.expanduser(
        '~/' + name + config_extension), must_exist=False)
    config = ConfigObj()
    config.merge(default_config)
    config.merge(platform_config)
    config.merge(user_config)
    config.merge(local_config)

    config.configspec = load_config_spec(name, directory)
    validator = Validator()
    result = config.validate(validator)
    if result is not True:
        raise ConfigObjError("the config file %s failed validation %s" % (name, describe_errors(config, result)))
    return config


def apply(target, config_path, config_name, directory):
    """
    Applies defined values from a path to a given target object.
    :param target: The object to receive the values defined
    :param config_path: The path that is the prefix to the values defined. The path is split on '.'.
    :param config_name: The configuration file to load.
    :param directory: the directory containing the config file
    """
    conf = load_config(config_name, directory)
    name_parts = config_path.split('.')
    apply_conf_path(conf, name_parts, target)


def fetch_conf_path(conf: Section, path):
    """
    Retrieves the named configuration section
    :param conf:        The root configuration
    :param path:   An iterable that lists the names of the config to resolve
    :return: The configuration object identified by the path
    """
    for p in path:    # lookup specific section
        conf = conf.get(p, None)
        if conf is None:
            return
    return conf


def apply_conf_path(conf: Section, name_parts, target):
    """
    Applies a configuration path to a given target object
    :param conf:        The root configuration object
    :param name_parts:  The path of the configuration to apply
    :param target:      The target object that receives the configured values
    """
    conf = fetch_conf_path(conf, name_parts)
    if conf:
        apply_conf(conf, target)


def apply_conf(conf: Section, target):
    """
    Applies the attributes contained in a configuration object to a target object.
    It does this by iterating over the items in the configuration and setting any attributes with the same name.
    """
    for k, v in conf.items():
        if hasattr(target, k):
            setattr(target, k, v)


def reconstruct_name(path, package_depth):
    """
    Retrieves a package from a path.
    :param path The filename of a module file
    :param package_depth The number of levels deep from the root.

    >>> reconstruct_name('C:/drive/dir/package1/package2/module.py', 2)
    'package1.package2.module'
    >>> reconstruct_name('C:\\\\drive\\\\dir\\\\module.py', 0)
    'module'
    """
    path = path.replace('\\', '/')
    parts = path.split('/')
    parts[-1] = os.path.splitext(parts[-1])[0]
    return '.'.join(parts[-package_depth - 1:])


def fq_module_name(module):
    """
    Retrieves the fully qualified name of the module.
    When a module is run as main, its name is '__main__', so the name is rebuilt from the package and filename.
    """
    if not module.__package__:
        raise ConfigObjError('module has no package defined')
    return module.__name__ if module.__name__ != '__main__' else \
        reconstruct_name(module.__file__, len(module.__package__.split('.')))


def configure_module(module, config_name=None):
    """
    Applies the configuration to the given module.
    The configuration is loaded from files named after the module, located in the same directory as the module.
    The nested location of settings in the file reflects the module's location (x.y.z.source_file)
    """
    fqname = fq_module_name(module)
    if not config_name:
        config_name = fqname.split('.')[-1]
    apply(module, fqname, config_name, os.path.dirname(module.__file__))
